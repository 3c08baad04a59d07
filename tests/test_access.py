"""
Tests for handles, records and access control
"""

import pytest

from cipherreg.access import AccessControlManager, AccessPolicy, Binding
from cipherreg.errors import InvalidInputError, NotRegisteredError
from cipherreg.handles import HANDLE_SIZE, CiphertextHandle
from cipherreg.records import Record, RecordStore

OWNER = "0xowner"
ADMIN = "0xadmin"
OTHER = "0xother"


class TestCiphertextHandle:
    """Tests for CiphertextHandle"""

    def test_equality_by_bytes(self):
        raw = b"\x01" * HANDLE_SIZE
        assert CiphertextHandle(raw) == CiphertextHandle(bytes(raw))
        assert hash(CiphertextHandle(raw)) == hash(CiphertextHandle(bytes(raw)))

    def test_random_handles_differ(self):
        assert CiphertextHandle.random() != CiphertextHandle.random()

    def test_wrong_size(self):
        with pytest.raises(InvalidInputError):
            CiphertextHandle(b"\x01" * 31)

    def test_hex_forms(self):
        handle = CiphertextHandle(b"\xab" * HANDLE_SIZE)
        assert handle.to_hex() == "0x" + "ab" * HANDLE_SIZE
        assert str(handle) == handle.to_hex()
        assert handle.short() == "0xabababab"
        assert CiphertextHandle.from_hex(handle.to_hex()) == handle
        assert CiphertextHandle.from_hex("ab" * HANDLE_SIZE) == handle

    def test_bad_hex(self):
        with pytest.raises(InvalidInputError):
            CiphertextHandle.from_hex("0xnothex")


class TestRecordStore:
    """Tests for Record and RecordStore"""

    @pytest.fixture
    def zero(self):
        return CiphertextHandle(b"\x00" * HANDLE_SIZE)

    def test_get_is_total(self, zero):
        store = RecordStore(zero)
        assert store.get("0xnobody") == Record.empty(zero)

    def test_put_overwrites(self, zero):
        store = RecordStore(zero)
        first = CiphertextHandle.random()
        second = CiphertextHandle.random()
        store.put(OWNER, Record(True, "a", first))
        store.put(OWNER, Record(True, "b", second))
        assert store.get(OWNER) == Record(True, "b", second)
        assert store.identities() == [OWNER]

    def test_with_name(self, zero):
        record = Record(True, "a", zero)
        assert record.with_name("b").display_name == "b"
        assert record.display_name == "a"

    def test_snapshot_restore(self, zero):
        store = RecordStore(zero)
        store.put(OWNER, Record(True, "a", CiphertextHandle.random()))
        snapshot = store.snapshot()

        store.put(OTHER, Record(True, "b", CiphertextHandle.random()))
        store.restore(snapshot)

        assert store.identities() == [OWNER]
        assert not store.get(OTHER).present

    def test_serialization(self, zero):
        store = RecordStore(zero)
        record = Record(True, "a", CiphertextHandle.random())
        store.put(OWNER, record)
        assert RecordStore.from_dict(zero, store.to_dict()).get(OWNER) == record


class TestAccessControlManager:
    """Tests for AccessControlManager"""

    def test_bind_starts_owner_and_registry(self):
        manager = AccessControlManager()
        handle = CiphertextHandle.random()
        assert manager.bind(handle, OWNER) == AccessPolicy.OWNER_AND_REGISTRY
        assert manager.policy_of(handle) == AccessPolicy.OWNER_AND_REGISTRY

    def test_rebind_resets_public(self):
        """Rebinding byte-equal handles starts a new lineage"""
        manager = AccessControlManager()
        handle = CiphertextHandle.random()
        manager.bind(handle, OWNER)
        manager.disclose(handle)
        first = manager.binding(handle)

        manager.bind(handle, OTHER)
        second = manager.binding(handle)

        assert second.policy == AccessPolicy.OWNER_AND_REGISTRY
        assert second.owner == OTHER
        assert second.generation > first.generation

    def test_disclose_idempotent(self):
        manager = AccessControlManager()
        handle = CiphertextHandle.random()
        manager.bind(handle, OWNER)
        assert manager.disclose(handle) == AccessPolicy.PUBLIC
        generation = manager.binding(handle).generation
        assert manager.disclose(handle) == AccessPolicy.PUBLIC
        assert manager.binding(handle).generation == generation

    def test_disclose_unbound(self):
        manager = AccessControlManager()
        with pytest.raises(NotRegisteredError):
            manager.disclose(CiphertextHandle.random())

    def test_authorize_owner_and_registry(self):
        manager = AccessControlManager()
        handle = CiphertextHandle.random()
        manager.bind(handle, OWNER)

        assert manager.authorize_decrypt(handle, OWNER, OWNER, False)
        assert manager.authorize_decrypt(handle, ADMIN, OWNER, True)
        assert not manager.authorize_decrypt(handle, OTHER, OWNER, False)

    def test_authorize_public(self):
        manager = AccessControlManager()
        handle = CiphertextHandle.random()
        manager.bind(handle, OWNER)
        manager.disclose(handle)
        assert manager.authorize_decrypt(handle, OTHER, OWNER, False)

    def test_authorize_owner_only(self):
        manager = AccessControlManager()
        handle = CiphertextHandle.random()
        manager.restore((
            {handle: Binding(handle, OWNER, AccessPolicy.OWNER_ONLY, generation=1)},
            2,
        ))
        assert manager.authorize_decrypt(handle, OWNER, OWNER, False)
        assert not manager.authorize_decrypt(handle, ADMIN, OWNER, True)

    def test_unbound_authorizes_nobody(self):
        manager = AccessControlManager()
        handle = CiphertextHandle.random()
        assert not manager.authorize_decrypt(handle, OWNER, OWNER, True)
        assert manager.policy_of(handle) is None

    def test_snapshot_restore(self):
        manager = AccessControlManager()
        kept = CiphertextHandle.random()
        manager.bind(kept, OWNER)
        snapshot = manager.snapshot()

        dropped = CiphertextHandle.random()
        manager.bind(dropped, OTHER)
        manager.disclose(kept)
        manager.restore(snapshot)

        assert manager.binding(dropped) is None
        assert manager.policy_of(kept) == AccessPolicy.OWNER_AND_REGISTRY
        assert manager.to_dict()["next_generation"] == 2

    def test_serialization(self):
        manager = AccessControlManager()
        handle = CiphertextHandle.random()
        manager.bind(handle, OWNER)
        manager.disclose(handle)

        restored = AccessControlManager.from_dict(manager.to_dict())
        assert restored.binding(handle) == manager.binding(handle)
        assert restored.to_dict()["next_generation"] == 2
