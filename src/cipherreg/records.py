"""
Record store

Maps an identity to its single record. Pure data: who may write a record
is decided by the registry, not here.
"""

from dataclasses import dataclass, replace
from typing import Dict, Any, List

from .handles import CiphertextHandle


@dataclass(frozen=True)
class Record:
    """Per-identity record pairing a display name with an attribute handle"""
    present: bool
    display_name: str
    attribute_handle: CiphertextHandle

    @classmethod
    def empty(cls, zero_handle: CiphertextHandle) -> "Record":
        """The record every unregistered identity reads as."""
        return cls(present=False, display_name="", attribute_handle=zero_handle)

    def with_name(self, display_name: str) -> "Record":
        return replace(self, display_name=display_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "present": self.present,
            "display_name": self.display_name,
            "attribute_handle": self.attribute_handle.to_hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        return cls(
            present=data["present"],
            display_name=data.get("display_name", ""),
            attribute_handle=CiphertextHandle.from_hex(data["attribute_handle"]),
        )


class RecordStore:
    """
    Identity -> Record mapping.

    get() is total: identities never written read as the empty record
    carrying the canonical zero handle.
    """

    def __init__(self, zero_handle: CiphertextHandle):
        self.zero_handle = zero_handle
        self._records: Dict[str, Record] = {}

    def get(self, identity: str) -> Record:
        record = self._records.get(identity)
        if record is None:
            return Record.empty(self.zero_handle)
        return record

    def put(self, identity: str, record: Record) -> None:
        self._records[identity] = record

    def identities(self) -> List[str]:
        """Every identity that has ever been written, present or not."""
        return list(self._records)

    def snapshot(self) -> Dict[str, Record]:
        # Records are immutable, a shallow copy is a full snapshot
        return dict(self._records)

    def restore(self, snapshot: Dict[str, Record]) -> None:
        self._records = dict(snapshot)

    def to_dict(self) -> Dict[str, Any]:
        return {identity: record.to_dict() for identity, record in self._records.items()}

    @classmethod
    def from_dict(cls, zero_handle: CiphertextHandle, data: Dict[str, Any]) -> "RecordStore":
        store = cls(zero_handle)
        for identity, record_data in data.items():
            store.put(identity, Record.from_dict(record_data))
        return store
