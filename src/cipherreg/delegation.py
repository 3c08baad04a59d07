"""
Delegated decryption

Off-registry handshake by which the holder of a handle obtains its
plaintext from the encryption backend:

1. Look up the current handle (registry read or event log)
2. Generate an ephemeral X25519 key pair for this session
3. Sign a typed request binding handles, registries and a validity window
   with the long-lived identity key
4. Submit the credential; the backend checks it and returns each value
   sealed to the ephemeral public key
5. Unseal locally

Nothing here writes registry state.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, TYPE_CHECKING

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from .crypto import (
    CryptoError,
    KeyPair,
    Signature,
    SignatureError,
    load_raw_public_key,
    public_key_bytes,
    sign_data,
    unseal,
    verify_signature,
)
from .errors import InvalidInputError, InvalidSignatureError, UnauthorizedError
from .handles import CiphertextHandle
from .logging import get_logger, log_context

if TYPE_CHECKING:
    from .backend import EncryptionBackend
    from .registry import Registry

DOMAIN_NAME = "cipherreg.Decryption"
DOMAIN_VERSION = "1"
PRIMARY_TYPE = "UserDecryptRequest"
DEFAULT_VALIDITY_SECONDS = 24 * 3600

logger = get_logger()


@dataclass
class EphemeralKeyPair:
    """Single-session X25519 key pair"""
    private_key: X25519PrivateKey
    public_key: bytes

    @classmethod
    def generate(cls) -> "EphemeralKeyPair":
        private_key = X25519PrivateKey.generate()
        return cls(private_key=private_key, public_key=public_key_bytes(private_key.public_key()))


@dataclass(frozen=True)
class HandleScope:
    """A handle together with the registry it is requested through"""
    handle: CiphertextHandle
    registry_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"handle": self.handle.to_hex(), "registry": self.registry_id}

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> "HandleScope":
        return cls(handle=CiphertextHandle.from_hex(data["handle"]), registry_id=data["registry"])


@dataclass
class DecryptionRequest:
    """
    Typed decryption request, the payload the identity key signs.

    valid_from is a unix timestamp in seconds; the request is usable from
    valid_from to valid_from + valid_duration inclusive.
    """
    chain_id: int
    verifying_registry: str
    public_key: bytes
    scopes: List[HandleScope]
    valid_from: int
    valid_duration: int

    def typed_payload(self) -> Dict[str, Any]:
        return {
            "primary_type": PRIMARY_TYPE,
            "domain": {
                "name": DOMAIN_NAME,
                "version": DOMAIN_VERSION,
                "chain_id": self.chain_id,
                "verifying_registry": self.verifying_registry,
            },
            "message": {
                "public_key": self.public_key.hex(),
                "scopes": [scope.to_dict() for scope in self.scopes],
                "valid_from": self.valid_from,
                "valid_duration": self.valid_duration,
            },
        }

    @property
    def valid_until(self) -> int:
        return self.valid_from + self.valid_duration

    def is_valid_at(self, timestamp: float) -> bool:
        return self.valid_from <= timestamp <= self.valid_until

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DecryptionRequest":
        domain = payload["domain"]
        message = payload["message"]
        return cls(
            chain_id=domain["chain_id"],
            verifying_registry=domain["verifying_registry"],
            public_key=bytes.fromhex(message["public_key"]),
            scopes=[HandleScope.from_dict(s) for s in message["scopes"]],
            valid_from=message["valid_from"],
            valid_duration=message["valid_duration"],
        )


@dataclass
class DelegationCredential:
    """
    Signed request plus the signer's public key.

    Never persisted by the registry; built per request and consumed once
    by the backend.
    """
    subject: str
    request: DecryptionRequest
    signature: Signature
    signer_public_key: bytes

    @property
    def scopes(self) -> List[HandleScope]:
        return self.request.scopes

    def verify(self) -> None:
        """
        Check the signature covers exactly this request and was made by
        subject's key.

        Raises:
            InvalidSignatureError: On any mismatch
        """
        if self.signature.signer != self.subject:
            raise InvalidSignatureError("Signature was not made by the credential subject")
        try:
            public_key = load_raw_public_key(self.signer_public_key)
            verify_signature(self.request.typed_payload(), self.signature, public_key)
        except (SignatureError, CryptoError) as e:
            raise InvalidSignatureError(str(e))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "request": self.request.typed_payload(),
            "signature": self.signature.to_dict(),
            "signer_public_key": self.signer_public_key.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DelegationCredential":
        return cls(
            subject=data["subject"],
            request=DecryptionRequest.from_payload(data["request"]),
            signature=Signature.from_dict(data["signature"]),
            signer_public_key=bytes.fromhex(data["signer_public_key"]),
        )


def build_credential(identity_key: KeyPair, request: DecryptionRequest) -> DelegationCredential:
    """Sign request with identity_key."""
    return DelegationCredential(
        subject=identity_key.address,
        request=request,
        signature=sign_data(request.typed_payload(), identity_key),
        signer_public_key=public_key_bytes(identity_key.public_key),
    )


def decode_value(plaintext: bytes) -> int:
    return int.from_bytes(plaintext, "big")


class DelegatedDecryptionClient:
    """
    Client side of the delegated decryption handshake.

    Usage:
        client = DelegatedDecryptionClient(registry, backend, alice_key)
        value = client.decrypt_own()
    """

    def __init__(
        self,
        registry: "Registry",
        backend: "EncryptionBackend",
        identity_key: KeyPair,
        validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.backend = backend
        self.identity_key = identity_key
        self.validity_seconds = validity_seconds
        self.clock = clock

    @property
    def identity(self) -> str:
        return self.identity_key.address

    def current_handle(self, identity: Optional[str] = None) -> CiphertextHandle:
        """Current attribute handle of identity (default: our own)."""
        if identity is None:
            raw = self.registry.get_own_attribute_handle(self.identity)
        else:
            raw = self.registry.get_record(identity)[2]
        return CiphertextHandle(raw)

    def build_request(
        self,
        handles: Sequence[CiphertextHandle],
        ephemeral: EphemeralKeyPair,
        valid_from: Optional[int] = None,
    ) -> DecryptionRequest:
        if not handles:
            raise InvalidInputError("At least one handle is required")
        if valid_from is None:
            valid_from = int(self.clock())
        registry_id = self.registry.registry_id
        return DecryptionRequest(
            chain_id=self.registry.config.chain_id,
            verifying_registry=registry_id,
            public_key=ephemeral.public_key,
            scopes=[HandleScope(handle, registry_id) for handle in handles],
            valid_from=valid_from,
            valid_duration=self.validity_seconds,
        )

    def user_decrypt(self, handles: Sequence[CiphertextHandle]) -> Dict[CiphertextHandle, int]:
        """
        Decrypt handles through a signed, time-bounded credential.

        The registry's advisory check runs first so we never ask the
        backend for something the registry would not grant.

        Raises:
            UnauthorizedError: If a handle is not decryptable by us
            ExpiredError, InvalidSignatureError: From the backend
        """
        for handle in handles:
            if not self.registry.can_decrypt(handle, self.identity):
                logger.warning("Refusing to request undecryptable handle", handle=handle.short())
                raise UnauthorizedError(f"{self.identity} may not decrypt {handle.short()}")

        ephemeral = EphemeralKeyPair.generate()
        credential = build_credential(self.identity_key, self.build_request(handles, ephemeral))

        with log_context(identity=self.identity, operation="user_decrypt"):
            with logger.timed("user_decrypt"):
                sealed = self.backend.user_decrypt(credential)

        values = {}
        for handle in handles:
            plaintext = unseal(ephemeral.private_key, sealed[handle], aad=handle.value)
            values[handle] = decode_value(plaintext)
        return values

    def decrypt(self, handle: CiphertextHandle) -> int:
        return self.user_decrypt([handle])[handle]

    def decrypt_own(self) -> int:
        return self.decrypt(self.current_handle())

    def public_decrypt(self, handle: CiphertextHandle) -> int:
        """Plaintext of a disclosed handle; no credential needed."""
        return self.backend.public_decrypt(handle)
