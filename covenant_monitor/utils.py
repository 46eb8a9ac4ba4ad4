import hashlib
import pandas as pd
from datetime import datetime, timezone
from typing import Iterable, List, Mapping


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Normalise a datetime to UTC-aware regardless of input tz-awareness."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def stable_id(*parts: object) -> str:
    """Deterministic 12-char id from the given parts."""
    raw = ":".join(str(p) for p in parts)
    return hashlib.md5(raw.encode()).hexdigest()[:12]


def records_frame(records: Iterable[Mapping], columns: List[str]) -> pd.DataFrame:
    """Build a DataFrame from store records, guaranteeing the given columns exist."""
    df = pd.DataFrame([dict(r) for r in records])
    for col in columns:
        if col not in df.columns:
            df[col] = None
    return df
