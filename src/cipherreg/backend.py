"""
Encryption backend interface

The registry never sees plaintext. It talks to an encryption backend that
owns ciphertexts, hands out opaque handles, keeps its own capability list
per handle, and serves delegated decryption requests.

LocalEncryptionBackend is an in-process backend: values are held under a
Fernet key, external inputs are proven by an Ed25519 input-verifier
signature, and decrypted values are sealed to the requester's ephemeral
X25519 key.
"""

import base64
import hashlib
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set, Tuple

from cryptography.fernet import Fernet, InvalidToken

from .crypto import (
    SignatureError,
    Signature,
    generate_key_pair,
    load_private_key,
    identity_address,
    seal_to,
    serialize_private_key,
    sign_data,
    verify_signature,
    KeyPair,
)
from .delegation import DelegationCredential
from .errors import (
    ExpiredError,
    InvalidCiphertextError,
    InvalidInputError,
    UnauthorizedError,
)
from .handles import CiphertextHandle
from .logging import get_logger

VALUE_SIZE = 8  # encrypted values are unsigned 64-bit at most
ZERO_HANDLE = CiphertextHandle(hashlib.sha256(b"cipherreg/zero/v1").digest())
DEFAULT_MAX_VALIDITY_SECONDS = 365 * 24 * 3600

# (handle, requester) -> allowed
Authorizer = Callable[[CiphertextHandle, str], bool]
# inclusive (low, high) bounds an imported value must fall in
ValueRange = Tuple[int, int]

logger = get_logger()


@dataclass
class EncryptedInput:
    """Client-side ciphertext together with its input proof"""
    ciphertext: bytes
    proof: bytes

    def to_dict(self) -> Dict[str, str]:
        return {"ciphertext": self.ciphertext.hex(), "proof": self.proof.hex()}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "EncryptedInput":
        return cls(ciphertext=bytes.fromhex(data["ciphertext"]), proof=bytes.fromhex(data["proof"]))


class EncryptionBackend(ABC):
    """
    Abstract encryption backend.

    Backends must implement handle minting, capability bookkeeping and
    decryption. User decryption is only served through registries that
    have attached an authorizer; it is consulted for every handle requested
    through that registry, so the backend mirrors the registry's own policy.
    """

    def __init__(self):
        self._authorizers: Dict[str, Authorizer] = {}

    @abstractmethod
    def encrypt(self, plain_value: int) -> CiphertextHandle:
        """Encrypt a value directly and return a fresh handle."""
        pass

    @abstractmethod
    def import_external(
        self,
        external_ciphertext: bytes,
        proof: bytes,
        registry_id: str,
        caller: str,
        value_range: Optional[ValueRange] = None,
    ) -> CiphertextHandle:
        """
        Turn a client ciphertext into a handle.

        Raises:
            InvalidCiphertextError: If the proof does not verify for
                (ciphertext, registry_id, caller), or the value lies
                outside value_range
        """
        pass

    @abstractmethod
    def discard(self, handle: CiphertextHandle) -> None:
        """Forget a minted handle, its value and its capabilities."""
        pass

    @abstractmethod
    def grant_capability(self, handle: CiphertextHandle, identity: str) -> None:
        pass

    @abstractmethod
    def make_public(self, handle: CiphertextHandle) -> None:
        pass

    @abstractmethod
    def is_allowed(self, handle: CiphertextHandle, identity: str) -> bool:
        pass

    @abstractmethod
    def zero_value_handle(self) -> CiphertextHandle:
        """Canonical, reusable, publicly decryptable handle of zero."""
        pass

    @abstractmethod
    def user_decrypt(
        self,
        credential: DelegationCredential,
        now: Optional[float] = None,
    ) -> Dict[CiphertextHandle, Dict[str, str]]:
        """
        Serve a delegated decryption request.

        Returns:
            Map of handle to value sealed to the credential's ephemeral key

        Raises:
            InvalidSignatureError, ExpiredError, UnauthorizedError
        """
        pass

    @abstractmethod
    def public_decrypt(self, handle: CiphertextHandle) -> int:
        pass

    def grant_self_capability(self, handle: CiphertextHandle, registry_id: str) -> None:
        """Grant the calling registry standing capability over handle."""
        self.grant_capability(handle, registry_id)

    def to_opaque_reference(self, handle: CiphertextHandle) -> bytes:
        return handle.value

    def attach_authorizer(self, registry_id: str, authorizer: Authorizer) -> None:
        self._authorizers[registry_id] = authorizer

    def authorizer_for(self, registry_id: str) -> Optional[Authorizer]:
        return self._authorizers.get(registry_id)


class LocalEncryptionBackend(EncryptionBackend):
    """
    In-process encryption backend.

    Usage:
        backend = LocalEncryptionBackend()
        encrypted = backend.create_encrypted_input(30, registry_id, alice)
        handle = backend.import_external(encrypted.ciphertext, encrypted.proof,
                                         registry_id, alice)
    """

    def __init__(
        self,
        fernet_key: Optional[bytes] = None,
        input_verifier: Optional[KeyPair] = None,
        max_validity_seconds: int = DEFAULT_MAX_VALIDITY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self.fernet_key = fernet_key or Fernet.generate_key()
        self._fernet = Fernet(self.fernet_key)
        self.input_verifier = input_verifier or generate_key_pair()
        self.max_validity_seconds = max_validity_seconds
        self.clock = clock

        self._values: Dict[CiphertextHandle, bytes] = {}
        self._acl: Dict[CiphertextHandle, Set[str]] = {}
        self._public: Set[CiphertextHandle] = set()

        self._store_value(ZERO_HANDLE, 0)
        self._public.add(ZERO_HANDLE)

    # Values

    def _store_value(self, handle: CiphertextHandle, value: int) -> None:
        self._values[handle] = self._fernet.encrypt(value.to_bytes(VALUE_SIZE, "big"))
        self._acl.setdefault(handle, set())

    def _read_value(self, handle: CiphertextHandle) -> int:
        token = self._values[handle]
        return int.from_bytes(self._fernet.decrypt(token), "big")

    def _check_value(self, plain_value: Any) -> int:
        if isinstance(plain_value, bool) or not isinstance(plain_value, int):
            raise InvalidInputError("Encrypted values must be integers")
        if not 0 <= plain_value < 2 ** (8 * VALUE_SIZE):
            raise InvalidInputError(f"Value {plain_value} does not fit in {VALUE_SIZE} bytes")
        return plain_value

    def _require(self, handle: CiphertextHandle) -> None:
        if handle not in self._values:
            raise InvalidInputError(f"Unknown handle {handle.short()}")

    def encrypt(self, plain_value: int) -> CiphertextHandle:
        value = self._check_value(plain_value)
        handle = CiphertextHandle.random()
        self._store_value(handle, value)
        return handle

    def create_encrypted_input(self, plain_value: int, registry_id: str, caller: str) -> EncryptedInput:
        """
        Encrypt a value client-side and prove it for (registry_id, caller).

        Plays the role of the client encryption SDK plus input verifier.
        """
        value = self._check_value(plain_value)
        ciphertext = self._fernet.encrypt(value.to_bytes(VALUE_SIZE, "big"))
        signature = sign_data(self._input_claim(ciphertext, registry_id, caller), self.input_verifier)
        return EncryptedInput(ciphertext=ciphertext, proof=signature.signature)

    @staticmethod
    def _input_claim(ciphertext: bytes, registry_id: str, caller: str) -> Dict[str, str]:
        return {
            "ciphertext": hashlib.sha256(ciphertext).hexdigest(),
            "registry": registry_id,
            "caller": caller,
        }

    def import_external(
        self,
        external_ciphertext: bytes,
        proof: bytes,
        registry_id: str,
        caller: str,
        value_range: Optional[ValueRange] = None,
    ) -> CiphertextHandle:
        signature = Signature(signature=proof, signer=self.input_verifier.address)
        claim = self._input_claim(external_ciphertext, registry_id, caller)
        try:
            verify_signature(claim, signature, self.input_verifier.public_key)
        except SignatureError:
            logger.warning("Rejected input proof", caller=caller)
            raise InvalidCiphertextError("Input proof does not verify")

        try:
            plaintext = self._fernet.decrypt(external_ciphertext)
        except InvalidToken:
            raise InvalidCiphertextError("Ciphertext is malformed")

        value = int.from_bytes(plaintext, "big")
        if value_range is not None:
            low, high = value_range
            if not low <= value <= high:
                logger.warning("Rejected out-of-range input", caller=caller)
                raise InvalidCiphertextError(f"Encrypted value is outside [{low}, {high}]")

        handle = CiphertextHandle.random()
        self._store_value(handle, value)
        return handle

    def discard(self, handle: CiphertextHandle) -> None:
        if handle == ZERO_HANDLE:
            raise InvalidInputError("The zero handle cannot be discarded")
        self._values.pop(handle, None)
        self._acl.pop(handle, None)
        self._public.discard(handle)
        logger.debug("Discarded handle", handle=handle.short())

    def __contains__(self, handle: CiphertextHandle) -> bool:
        return handle in self._values

    # Capabilities

    def grant_capability(self, handle: CiphertextHandle, identity: str) -> None:
        self._require(handle)
        self._acl[handle].add(identity)
        logger.debug("Granted capability", handle=handle.short(), grantee=identity)

    def make_public(self, handle: CiphertextHandle) -> None:
        self._require(handle)
        self._public.add(handle)

    def is_allowed(self, handle: CiphertextHandle, identity: str) -> bool:
        if handle in self._public:
            return True
        return identity in self._acl.get(handle, set())

    def zero_value_handle(self) -> CiphertextHandle:
        return ZERO_HANDLE

    # Decryption

    def user_decrypt(
        self,
        credential: DelegationCredential,
        now: Optional[float] = None,
    ) -> Dict[CiphertextHandle, Dict[str, str]]:
        credential.verify()

        request = credential.request
        if now is None:
            now = self.clock()
        if not 0 < request.valid_duration <= self.max_validity_seconds:
            raise ExpiredError(f"Validity duration {request.valid_duration}s is out of range")
        if not request.is_valid_at(now):
            raise ExpiredError("Credential is outside its validity window")

        authorizer = self.authorizer_for(request.verifying_registry)
        if authorizer is None:
            raise UnauthorizedError(f"{request.verifying_registry} is not an attached registry")

        sealed = {}
        for scope in request.scopes:
            handle = scope.handle
            if scope.registry_id != request.verifying_registry:
                raise UnauthorizedError(
                    f"Scope for {handle.short()} names {scope.registry_id}, "
                    f"not the verifying registry"
                )
            if handle not in self._values:
                raise UnauthorizedError(f"Unknown handle {handle.short()}")
            if not self.is_allowed(handle, scope.registry_id):
                raise UnauthorizedError(f"Registry {scope.registry_id} holds no capability on {handle.short()}")

            if not authorizer(handle, credential.subject):
                logger.warning("Denied user decryption", handle=handle.short(), requester=credential.subject)
                raise UnauthorizedError(f"{credential.subject} may not decrypt {handle.short()}")

            plaintext = self._read_value(handle).to_bytes(VALUE_SIZE, "big")
            sealed[handle] = seal_to(request.public_key, plaintext, aad=handle.value)
        return sealed

    def public_decrypt(self, handle: CiphertextHandle) -> int:
        if handle not in self._public:
            raise UnauthorizedError(f"Handle {handle.short()} is not public")
        return self._read_value(handle)

    # Persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fernet_key": self.fernet_key.decode(),
            "input_verifier": base64.b64encode(
                serialize_private_key(self.input_verifier.private_key)
            ).decode(),
            "max_validity_seconds": self.max_validity_seconds,
            "values": {h.to_hex(): token.decode() for h, token in self._values.items()},
            "acl": {h.to_hex(): sorted(ids) for h, ids in self._acl.items() if ids},
            "public": sorted(h.to_hex() for h in self._public),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalEncryptionBackend":
        private_key = load_private_key(base64.b64decode(data["input_verifier"]))
        public_key = private_key.public_key()
        verifier = KeyPair(
            private_key=private_key,
            public_key=public_key,
            address=identity_address(public_key),
            created_at="",
        )
        backend = cls(
            fernet_key=data["fernet_key"].encode(),
            input_verifier=verifier,
            max_validity_seconds=data.get("max_validity_seconds", DEFAULT_MAX_VALIDITY_SECONDS),
        )
        for raw, token in data.get("values", {}).items():
            handle = CiphertextHandle.from_hex(raw)
            backend._values[handle] = token.encode()
            backend._acl.setdefault(handle, set())
        for raw, identities in data.get("acl", {}).items():
            backend._acl[CiphertextHandle.from_hex(raw)] = set(identities)
        backend._public.update(CiphertextHandle.from_hex(raw) for raw in data.get("public", []))
        return backend
