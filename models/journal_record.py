from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class JournalRecord:
    """In-memory representation of a row in the EVENT_JOURNAL table.

    Attributes:
        id: Primary key (None for new records).
        event_name: Runtime event name as received.
        payload: Decoded JSON payload (None when the runtime sent none).
        received_at: Unix timestamp (seconds, fractional) when the frame arrived.
    """

    id: Optional[int]
    event_name: str
    payload: Any = None
    received_at: Optional[float] = None
