"""Structured sync pass events."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from shared.models import SyncResult, utc_now


class SyncEventKind(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SyncEvent:
    """Published at the start and end of every full pass."""
    kind: SyncEventKind
    timestamp: datetime = field(default_factory=utc_now)
    result: Optional[SyncResult] = None
    error: Optional[Exception] = None
