"""
Registry state machine

Orchestrates the record lifecycle by composing the record store, the
access control manager and the encryption backend:

    Unregistered --register--> Registered --update_*--> Registered
    Registered --clear (administrator)--> Unregistered

Each mutating operation is a single unit of work: record store, access
control state, administrator and event log are snapshotted on entry and
restored if any step fails, and handles minted in the backend during the
failed operation are discarded, so no partially applied state is observable.
Events are delivered to subscribers only after the operation commits.

The registry never decrypts. It hands out handles and policy state; the
plaintext is obtained off-registry through cipherreg.delegation.
"""

import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

from .access import AccessControlManager, AccessPolicy, Binding
from .backend import EncryptionBackend
from .config import RegistryConfig
from .errors import (
    InvalidInputError,
    NotAuthorizedError,
    NotRegisteredError,
    RegistryError,
)
from .events import EventLog, EventType
from .handles import CiphertextHandle
from .logging import get_logger, log_context
from .records import Record, RecordStore

logger = get_logger()


class Registry:
    """
    Confidential attribute registry.

    Every operation takes the invoking principal as caller. Administrative
    operations check the role before looking at the target record.

    Usage:
        registry = Registry(RegistryConfig(administrator=admin), backend)
        registry.register_with_plain_value(alice, "alice", 30)
        present, name, handle = registry.get_record(alice)
    """

    def __init__(
        self,
        config: RegistryConfig,
        backend: EncryptionBackend,
        store: Optional[RecordStore] = None,
        access: Optional[AccessControlManager] = None,
        events: Optional[EventLog] = None,
        administrator: Optional[str] = None,
    ):
        config.validate()
        self.config = config
        self.backend = backend
        self.zero_handle = backend.zero_value_handle()
        self._store = store if store is not None else RecordStore(self.zero_handle)
        self._access = access if access is not None else AccessControlManager()
        self._events = events if events is not None else EventLog()
        self._administrator = administrator or config.administrator
        self._lock = threading.RLock()

        backend.attach_authorizer(self.registry_id, self.can_decrypt)

    @property
    def registry_id(self) -> str:
        return self.config.registry_id

    @property
    def access(self) -> AccessControlManager:
        return self._access

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def administrator(self) -> str:
        return self._administrator

    def is_administrator(self, identity: str) -> bool:
        return identity == self._administrator

    # Unit of work

    @contextmanager
    def _mutation(self, operation: str, caller: str):
        """Yields a list; handles appended to it are discarded on failure."""
        committed = []
        minted: List[CiphertextHandle] = []
        with self._lock, log_context(identity=caller, operation=operation, registry_id=self.registry_id):
            records = self._store.snapshot()
            bindings = self._access.snapshot()
            administrator = self._administrator
            mark = self._events.mark()
            try:
                yield minted
            except Exception as e:
                for handle in minted:
                    self.backend.discard(handle)
                self._store.restore(records)
                self._access.restore(bindings)
                self._administrator = administrator
                self._events.truncate(mark)
                if isinstance(e, RegistryError):
                    logger.warning(f"{operation} rejected: {e}", error=type(e).__name__)
                else:
                    logger.error(f"{operation} failed: {e}", exc_info=True)
                raise
            committed = self._events.since(mark)
        self._events.notify(committed)

    # Validation

    @staticmethod
    def _require_identity(identity: Any, what: str = "Identity") -> str:
        if not isinstance(identity, str) or not identity:
            raise InvalidInputError(f"{what} must not be empty")
        return identity

    def _require_name(self, name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise InvalidInputError("Display name must not be empty")
        if len(name) > self.config.max_name_length:
            raise InvalidInputError(
                f"Display name exceeds {self.config.max_name_length} characters"
            )
        return name

    @staticmethod
    def _require_input(external_ciphertext: Any, proof: Any) -> None:
        if not external_ciphertext:
            raise InvalidInputError("External ciphertext must not be empty")
        if not proof:
            raise InvalidInputError("Input proof must not be empty")

    def _require_value(self, plain_value: Any) -> int:
        if isinstance(plain_value, bool) or not isinstance(plain_value, int):
            raise InvalidInputError("Attribute value must be an integer")
        if not self.config.attribute_min <= plain_value <= self.config.attribute_max:
            raise InvalidInputError(
                f"Attribute value {plain_value} outside "
                f"[{self.config.attribute_min}, {self.config.attribute_max}]"
            )
        return plain_value

    def _require_registered(self, identity: str) -> Record:
        record = self._store.get(identity)
        if not record.present:
            raise NotRegisteredError(f"{identity} is not registered")
        return record

    def _require_administrator(self, caller: str) -> None:
        if not self.is_administrator(caller):
            raise NotAuthorizedError(f"{caller} is not the registry administrator")

    # Internal steps

    def _import(self, external_ciphertext: bytes, proof: bytes, caller: str) -> CiphertextHandle:
        return self.backend.import_external(
            external_ciphertext,
            proof,
            self.registry_id,
            caller,
            value_range=(self.config.attribute_min, self.config.attribute_max),
        )

    def _install(self, identity: str, display_name: str, handle: CiphertextHandle) -> None:
        """Bind a fresh handle, grant capabilities, store and announce it."""
        self._access.bind(handle, identity)
        self.backend.grant_self_capability(handle, self.registry_id)
        self.backend.grant_capability(handle, identity)
        self._store.put(identity, Record(present=True, display_name=display_name, attribute_handle=handle))
        self._events.append(
            EventType.REGISTERED,
            identity,
            display_name=display_name,
            handle=handle.to_hex(),
        )

    def _disclose(self, identity: str, record: Record) -> None:
        handle = record.attribute_handle
        self._access.disclose(handle)
        self.backend.make_public(handle)
        self._events.append(EventType.DISCLOSED, identity, handle=handle.to_hex())
        logger.info("Attribute disclosed", target=identity, handle=handle.short())

    # Operations

    def register_with_ciphertext(
        self,
        caller: str,
        name: str,
        external_ciphertext: bytes,
        proof: bytes,
    ) -> CiphertextHandle:
        """
        Register (or re-register) caller with a client-encrypted attribute.

        Raises:
            InvalidInputError: Empty caller, name, ciphertext or proof
            InvalidCiphertextError: The backend rejected the proof, or the
                value lies outside [attribute_min, attribute_max]
        """
        with self._mutation("register", caller) as minted:
            self._require_identity(caller, "Caller")
            self._require_name(name)
            self._require_input(external_ciphertext, proof)
            handle = self._import(external_ciphertext, proof, caller)
            minted.append(handle)
            self._install(caller, name, handle)
            logger.info("Registered", handle=handle.short())
        return handle

    def register_with_plain_value(self, caller: str, name: str, plain_value: int) -> CiphertextHandle:
        """
        Register (or re-register) caller, letting the backend encrypt the
        value directly. Convenience path without an input proof.
        """
        with self._mutation("register_plain", caller) as minted:
            self._require_identity(caller, "Caller")
            self._require_name(name)
            value = self._require_value(plain_value)
            handle = self.backend.encrypt(value)
            minted.append(handle)
            self._install(caller, name, handle)
            logger.info("Registered", handle=handle.short())
        return handle

    def update_display_name(self, caller: str, new_name: str) -> None:
        """Replace caller's display name; handle and policy are untouched."""
        with self._mutation("update_display_name", caller):
            self._require_name(new_name)
            record = self._require_registered(caller)
            self._store.put(caller, record.with_name(new_name))
            self._events.append(EventType.DISPLAY_NAME_UPDATED, caller, display_name=new_name)
            logger.info("Display name updated")

    def update_attribute(self, caller: str, external_ciphertext: bytes, proof: bytes) -> CiphertextHandle:
        """
        Replace caller's attribute with a freshly bound handle.

        The new handle starts at OWNER_AND_REGISTRY even if the old one had
        been disclosed.
        """
        with self._mutation("update_attribute", caller) as minted:
            self._require_input(external_ciphertext, proof)
            record = self._require_registered(caller)
            handle = self._import(external_ciphertext, proof, caller)
            minted.append(handle)
            self._install(caller, record.display_name, handle)
            logger.info("Attribute updated", handle=handle.short())
        return handle

    def disclose_own(self, caller: str) -> None:
        """Make caller's current attribute public. Safe to repeat."""
        with self._mutation("disclose_own", caller):
            record = self._require_registered(caller)
            self._disclose(caller, record)

    def disclose_for(self, caller: str, target: str) -> None:
        """Administrator: make target's current attribute public."""
        with self._mutation("disclose_for", caller):
            self._require_administrator(caller)
            record = self._require_registered(target)
            self._disclose(target, record)

    def clear(self, caller: str, target: str) -> None:
        """
        Administrator: wipe target's record.

        The record keeps its slot but reads as unregistered, carrying the
        zero handle under a fresh binding.
        """
        with self._mutation("clear", caller):
            self._require_administrator(caller)
            self._require_registered(target)
            self._access.bind(self.zero_handle, target)
            self._store.put(target, Record.empty(self.zero_handle))
            self._events.append(EventType.CLEARED, target)
            logger.info("Record cleared", target=target)

    def transfer_administrator(self, caller: str, new_administrator: str) -> None:
        """Administrator: hand the role to another identity."""
        with self._mutation("transfer_administrator", caller):
            self._require_administrator(caller)
            self._require_identity(new_administrator, "New administrator")
            self._administrator = new_administrator
            self._events.append(
                EventType.ADMINISTRATOR_TRANSFERRED,
                new_administrator,
                previous=caller,
            )
            logger.info("Administrator transferred", new_administrator=new_administrator)

    # Reads

    def is_registered(self, identity: str) -> bool:
        with self._lock:
            return self._store.get(identity).present

    def get_record(self, identity: str) -> Tuple[bool, str, bytes]:
        """(present, display_name, opaque handle bytes)"""
        with self._lock:
            record = self._store.get(identity)
            return (
                record.present,
                record.display_name,
                self.backend.to_opaque_reference(record.attribute_handle),
            )

    def get_own_attribute_handle(self, caller: str) -> bytes:
        with self._lock:
            record = self._require_registered(caller)
            return self.backend.to_opaque_reference(record.attribute_handle)

    def policy_of(self, handle: CiphertextHandle) -> Optional[AccessPolicy]:
        with self._lock:
            return self._access.policy_of(handle)

    def binding_of(self, handle: CiphertextHandle) -> Optional[Binding]:
        with self._lock:
            return self._access.binding(handle)

    def can_decrypt(self, handle: CiphertextHandle, requester: str) -> bool:
        """
        Whether requester may obtain the plaintext of handle right now.

        Disclosed handles stay decryptable by anyone. Otherwise only the
        current handle of a present record is decryptable; a handle that has
        since been replaced or cleared authorizes nobody.
        """
        with self._lock:
            binding = self._access.binding(handle)
            if binding is None:
                return False
            if binding.policy is AccessPolicy.PUBLIC:
                return True
            record = self._store.get(binding.owner)
            if not record.present or record.attribute_handle != handle:
                return False
            return self._access.authorize_decrypt(
                handle,
                requester,
                binding.owner,
                self.is_administrator(requester),
            )

    # Persistence

    def export_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "administrator": self._administrator,
                "records": self._store.to_dict(),
                "access": self._access.to_dict(),
            }

    @classmethod
    def from_state(
        cls,
        config: RegistryConfig,
        backend: EncryptionBackend,
        state: Dict[str, Any],
        events: Optional[EventLog] = None,
    ) -> "Registry":
        zero_handle = backend.zero_value_handle()
        return cls(
            config,
            backend,
            store=RecordStore.from_dict(zero_handle, state.get("records", {})),
            access=AccessControlManager.from_dict(state.get("access", {})),
            events=events,
            administrator=state.get("administrator"),
        )
