"""
Registry event log

Every registry mutation appends an event. Off-registry observers use the
log to learn the current handle of an identity without re-querying the
registry.

The log is:
- Append-only: entries are never modified
- Time-ordered: each entry has a sequence number
- Verifiable: each entry hashes its content together with the previous
  entry's hash
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from .handles import CiphertextHandle
from .logging import get_logger

GENESIS_HASH = "0" * 64

logger = get_logger()


class EventType(Enum):
    """Kinds of registry events."""
    REGISTERED = "Registered"
    DISPLAY_NAME_UPDATED = "DisplayNameUpdated"
    DISCLOSED = "Disclosed"
    CLEARED = "Cleared"
    ADMINISTRATOR_TRANSFERRED = "AdministratorTransferred"


@dataclass
class EventEntry:
    """
    A single event in the log.

    Registered carries (identity, display_name, handle), Disclosed carries
    (identity, handle), Cleared carries identity only.
    """
    event_type: EventType
    identity: str
    data: Dict[str, Any] = field(default_factory=dict)
    sequence: int = 0
    timestamp: datetime = field(default_factory=datetime.now)
    prev_hash: str = GENESIS_HASH
    recorded_hash: Optional[str] = None  # entry_hash as read back from disk

    @property
    def handle(self) -> Optional[CiphertextHandle]:
        raw = self.data.get("handle")
        return CiphertextHandle.from_hex(raw) if raw else None

    @property
    def display_name(self) -> Optional[str]:
        return self.data.get("display_name")

    def _content(self) -> Dict[str, Any]:
        return {
            "event": self.event_type.value,
            "identity": self.identity,
            "data": self.data,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "prev_hash": self.prev_hash,
        }

    def compute_hash(self) -> str:
        canonical = json.dumps(self._content(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        result = self._content()
        result["entry_hash"] = self.compute_hash()
        return result

    def to_line(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EventEntry":
        return cls(
            event_type=EventType(data["event"]),
            identity=data["identity"],
            data=data.get("data", {}),
            sequence=data["sequence"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            prev_hash=data.get("prev_hash", GENESIS_HASH),
            recorded_hash=data.get("entry_hash"),
        )

    @classmethod
    def from_line(cls, line: str) -> "EventEntry":
        return cls.from_dict(json.loads(line.strip()))


@dataclass
class LogVerificationResult:
    """Result of verifying the event hash chain"""
    valid: bool
    entries_checked: int
    first_bad_sequence: Optional[int] = None
    error: Optional[str] = None


Subscriber = Callable[[EventEntry], None]


class EventLog:
    """
    Append-only, hash-chained registry event log.

    append() stages an entry; notify() delivers it to subscribers. The
    registry only notifies after a mutation has committed, so subscribers
    never observe rolled-back events.
    """

    def __init__(self, entries: Optional[Iterable[EventEntry]] = None):
        self._entries: List[EventEntry] = list(entries or [])
        self._subscribers: List[Subscriber] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    @property
    def head_hash(self) -> str:
        if not self._entries:
            return GENESIS_HASH
        return self._entries[-1].compute_hash()

    def append(self, event_type: EventType, identity: str, **data: Any) -> EventEntry:
        entry = EventEntry(
            event_type=event_type,
            identity=identity,
            data=data,
            sequence=len(self._entries),
            prev_hash=self.head_hash,
        )
        self._entries.append(entry)
        return entry

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def notify(self, entries: Iterable[EventEntry]) -> None:
        """
        Deliver committed entries to every subscriber.

        A failing subscriber is logged and skipped; it cannot undo or fail
        the operation that produced the entries.
        """
        for entry in entries:
            for callback in list(self._subscribers):
                try:
                    callback(entry)
                except Exception as e:
                    logger.error(
                        f"Event subscriber failed: {e}",
                        exc_info=True,
                        sequence=entry.sequence,
                        event_type=entry.event_type.value,
                    )

    def mark(self) -> int:
        """Position to truncate back to if a mutation fails."""
        return len(self._entries)

    def truncate(self, mark: int) -> List[EventEntry]:
        """Drop entries appended after mark and return them."""
        dropped = self._entries[mark:]
        del self._entries[mark:]
        return dropped

    def since(self, mark: int) -> List[EventEntry]:
        return list(self._entries[mark:])

    def for_identity(self, identity: str) -> List[EventEntry]:
        return [e for e in self._entries if e.identity == identity]

    def latest_handle(self, identity: str) -> Optional[CiphertextHandle]:
        """
        Most recent handle announced for identity, or None if the identity
        was cleared after it (or never registered).
        """
        for entry in reversed(self._entries):
            if entry.identity != identity:
                continue
            if entry.event_type is EventType.CLEARED:
                return None
            if entry.event_type is EventType.REGISTERED:
                return entry.handle
        return None

    def verify(self) -> LogVerificationResult:
        """Recompute the hash chain from genesis."""
        prev_hash = GENESIS_HASH
        for index, entry in enumerate(self._entries):
            if entry.sequence != index:
                return LogVerificationResult(
                    valid=False,
                    entries_checked=index,
                    first_bad_sequence=entry.sequence,
                    error=f"Sequence gap at position {index}",
                )
            if entry.prev_hash != prev_hash:
                return LogVerificationResult(
                    valid=False,
                    entries_checked=index,
                    first_bad_sequence=entry.sequence,
                    error=f"Broken chain at sequence {entry.sequence}",
                )
            prev_hash = entry.compute_hash()
            if entry.recorded_hash and entry.recorded_hash != prev_hash:
                return LogVerificationResult(
                    valid=False,
                    entries_checked=index,
                    first_bad_sequence=entry.sequence,
                    error=f"Entry {entry.sequence} was modified",
                )
        return LogVerificationResult(valid=True, entries_checked=len(self._entries))

    def to_lines(self) -> List[str]:
        return [entry.to_line() for entry in self._entries]

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "EventLog":
        return cls(EventEntry.from_line(line) for line in lines if line.strip())
