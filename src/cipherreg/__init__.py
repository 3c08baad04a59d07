"""
cipherreg: Confidential Attribute Registry

A registry that binds each identity to a display name and an encrypted
attribute. The registry only ever holds opaque ciphertext handles;
plaintext is released off-registry through signed, time-bounded
delegated decryption.
"""

__version__ = "0.1.0"
__author__ = "cipherreg Contributors"

from .errors import (
    RegistryError,
    InvalidInputError,
    NotRegisteredError,
    NotAuthorizedError,
    InvalidCiphertextError,
    DecryptionError,
    UnauthorizedError,
    ExpiredError,
    InvalidSignatureError,
)
from .handles import CiphertextHandle, HANDLE_SIZE
from .records import Record, RecordStore
from .access import AccessPolicy, AccessControlManager, Binding
from .events import EventLog, EventEntry, EventType, LogVerificationResult, GENESIS_HASH
from .config import RegistryConfig
from .backend import (
    EncryptionBackend,
    LocalEncryptionBackend,
    EncryptedInput,
    ZERO_HANDLE,
)
from .registry import Registry
from .delegation import (
    DelegatedDecryptionClient,
    DelegationCredential,
    DecryptionRequest,
    EphemeralKeyPair,
    HandleScope,
    build_credential,
)
from .crypto import (
    KeyManager,
    KeyPair,
    Signature,
    generate_key_pair,
    sign_data,
    verify_signature,
    CryptoError,
    KeyNotFoundError,
    SignatureError,
)
from .storage import (
    RegistryStorage,
    find_project_root,
    StorageError,
    ProjectNotFoundError,
    ProjectExistsError,
)
from .logging import get_logger, configure_logging, log_context

__all__ = [
    "RegistryError",
    "InvalidInputError",
    "NotRegisteredError",
    "NotAuthorizedError",
    "InvalidCiphertextError",
    "DecryptionError",
    "UnauthorizedError",
    "ExpiredError",
    "InvalidSignatureError",
    "CiphertextHandle",
    "HANDLE_SIZE",
    "Record",
    "RecordStore",
    "AccessPolicy",
    "AccessControlManager",
    "Binding",
    "EventLog",
    "EventEntry",
    "EventType",
    "LogVerificationResult",
    "GENESIS_HASH",
    "RegistryConfig",
    "EncryptionBackend",
    "LocalEncryptionBackend",
    "EncryptedInput",
    "ZERO_HANDLE",
    "Registry",
    "DelegatedDecryptionClient",
    "DelegationCredential",
    "DecryptionRequest",
    "EphemeralKeyPair",
    "HandleScope",
    "build_credential",
    "KeyManager",
    "KeyPair",
    "Signature",
    "generate_key_pair",
    "sign_data",
    "verify_signature",
    "CryptoError",
    "KeyNotFoundError",
    "SignatureError",
    "RegistryStorage",
    "find_project_root",
    "StorageError",
    "ProjectNotFoundError",
    "ProjectExistsError",
    "get_logger",
    "configure_logging",
    "log_context",
]
