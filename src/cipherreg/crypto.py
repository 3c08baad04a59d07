"""
Cryptographic primitives for cipherreg

- Ed25519 identity keys and the 0x addresses derived from them
- Signatures over canonical JSON payloads (delegation credentials,
  input proofs)
- Sealing of small values to an X25519 public key
  (ephemeral ECDH + HKDF-SHA256 + AES-GCM)
- KeyManager: named identity keys under .cipherreg/keys/
"""

import hashlib
import json
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

ALGORITHM = "Ed25519"
ADDRESS_BYTES = 20
SEAL_INFO = b"cipherreg/seal/v1"
NONCE_BYTES = 12


class CryptoError(Exception):
    """Base exception for key, signature and sealing failures"""
    pass


class KeyNotFoundError(CryptoError):
    """No stored key under the requested name or address"""
    pass


class SignatureError(CryptoError):
    """A signature did not verify"""
    pass


@dataclass
class KeyPair:
    """Ed25519 identity key pair and its address"""
    private_key: Ed25519PrivateKey
    public_key: Ed25519PublicKey
    address: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        """Public metadata only; the private key is never included."""
        return {"address": self.address, "created_at": self.created_at, "algorithm": ALGORITHM}


@dataclass
class Signature:
    """Signature bytes plus the address that claims to have made them"""
    signature: bytes
    signer: str
    algorithm: str = ALGORITHM

    def to_dict(self) -> Dict[str, Any]:
        return {"signature": self.signature.hex(), "signer": self.signer, "algorithm": self.algorithm}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signature":
        return cls(
            signature=bytes.fromhex(data["signature"]),
            signer=data["signer"],
            algorithm=data.get("algorithm", ALGORITHM),
        )


# Keys and addresses

def public_key_bytes(public_key: Any) -> bytes:
    """Raw 32-byte form of an Ed25519 or X25519 public key."""
    return public_key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)


def identity_address(public_key: Any) -> str:
    """
    0x-prefixed hex of the last 20 bytes of SHA-256 over the raw public
    key. This is the identity string the registry sees.
    """
    digest = hashlib.sha256(public_key_bytes(public_key)).digest()
    return "0x" + digest[-ADDRESS_BYTES:].hex()


def load_raw_public_key(raw: bytes) -> Ed25519PublicKey:
    try:
        return Ed25519PublicKey.from_public_bytes(raw)
    except ValueError as e:
        raise CryptoError(f"Invalid Ed25519 public key: {e}")


def _key_pair(private_key: Ed25519PrivateKey, created_at: str) -> KeyPair:
    public_key = private_key.public_key()
    return KeyPair(
        private_key=private_key,
        public_key=public_key,
        address=identity_address(public_key),
        created_at=created_at,
    )


def generate_key_pair() -> KeyPair:
    """Fresh Ed25519 identity."""
    return _key_pair(Ed25519PrivateKey.generate(), datetime.now().isoformat())


def serialize_private_key(private_key: Ed25519PrivateKey, password: Optional[str] = None) -> bytes:
    """PKCS#8 PEM, encrypted when a password is given."""
    if password:
        protection = serialization.BestAvailableEncryption(password.encode())
    else:
        protection = serialization.NoEncryption()
    return private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        protection,
    )


def serialize_public_key(public_key: Any) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_private_key(pem_data: bytes, password: Optional[str] = None) -> Ed25519PrivateKey:
    """
    Raises:
        CryptoError: Malformed PEM, wrong or missing password
    """
    secret = password.encode() if password else None
    try:
        return serialization.load_pem_private_key(pem_data, password=secret)
    except (ValueError, TypeError) as e:
        raise CryptoError(f"Cannot load private key: {e}")


def load_public_key(pem_data: bytes) -> Any:
    try:
        return serialization.load_pem_public_key(pem_data)
    except ValueError as e:
        raise CryptoError(f"Cannot load public key: {e}")


# Signatures

def compute_canonical_hash(data: Dict[str, Any]) -> bytes:
    """SHA-256 of the payload as compact, key-sorted JSON."""
    encoded = json.dumps(data, sort_keys=True, separators=(",", ":")).encode()
    return hashlib.sha256(encoded).digest()


def sign_data(data: Dict[str, Any], key_pair: KeyPair) -> Signature:
    return Signature(
        signature=key_pair.private_key.sign(compute_canonical_hash(data)),
        signer=key_pair.address,
    )


def verify_signature(data: Dict[str, Any], signature: Signature, public_key: Any) -> bool:
    """
    Check that public_key belongs to the claimed signer and that the
    signature covers exactly data.

    Raises:
        SignatureError: On either mismatch
    """
    if identity_address(public_key) != signature.signer:
        raise SignatureError("Signer address does not match public key")
    try:
        public_key.verify(signature.signature, compute_canonical_hash(data))
    except InvalidSignature:
        raise SignatureError("Signature does not cover this payload")
    return True


# Sealing

def _seal_key(shared_secret: bytes, sender_pub: bytes, recipient_pub: bytes) -> bytes:
    kdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=sender_pub + recipient_pub,
        info=SEAL_INFO,
    )
    return kdf.derive(shared_secret)


def seal_to(recipient_public: bytes, plaintext: bytes, aad: bytes = b"") -> Dict[str, str]:
    """
    Encrypt plaintext so only the holder of the matching X25519 private
    key can read it. A one-off sender key is generated per call.

    Returns:
        Hex fields: sender, nonce, ciphertext
    """
    try:
        recipient = X25519PublicKey.from_public_bytes(recipient_public)
    except ValueError as e:
        raise CryptoError(f"Invalid X25519 public key: {e}")

    sender = X25519PrivateKey.generate()
    sender_pub = public_key_bytes(sender.public_key())
    nonce = os.urandom(NONCE_BYTES)
    key = _seal_key(sender.exchange(recipient), sender_pub, recipient_public)
    return {
        "sender": sender_pub.hex(),
        "nonce": nonce.hex(),
        "ciphertext": AESGCM(key).encrypt(nonce, plaintext, aad).hex(),
    }


def unseal(recipient_private: X25519PrivateKey, sealed: Dict[str, str], aad: bytes = b"") -> bytes:
    """
    Open a box made by seal_to().

    Raises:
        CryptoError: The box is malformed, was sealed to another key or
            was modified in transit
    """
    try:
        sender_pub = bytes.fromhex(sealed["sender"])
        nonce = bytes.fromhex(sealed["nonce"])
        ciphertext = bytes.fromhex(sealed["ciphertext"])
        sender = X25519PublicKey.from_public_bytes(sender_pub)
    except (KeyError, TypeError, ValueError) as e:
        raise CryptoError(f"Malformed sealed value: {e}")

    recipient_pub = public_key_bytes(recipient_private.public_key())
    key = _seal_key(recipient_private.exchange(sender), sender_pub, recipient_pub)
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, aad)
    except (InvalidTag, ValueError):
        raise CryptoError("Sealed value could not be opened")


class KeyManager:
    """
    Named identity keys of a cipherreg project.

        .cipherreg/keys/
        ├── alice.key      # PKCS#8 private key, mode 0600
        ├── alice.pub      # SubjectPublicKeyInfo PEM
        └── keys.json      # {"keys": {name: {address, created_at, ...}}}
    """

    def __init__(self, project_dir: Path):
        """
        Args:
            project_dir: The .cipherreg directory
        """
        self.project_dir = Path(project_dir)
        self.keys_dir = self.project_dir / "keys"
        self.index_path = self.keys_dir / "keys.json"

    def _paths(self, name: str) -> Tuple[Path, Path]:
        return self.keys_dir / f"{name}.key", self.keys_dir / f"{name}.pub"

    def _read_index(self) -> Dict[str, Any]:
        if not self.index_path.exists():
            return {"keys": {}}
        return json.loads(self.index_path.read_text())

    def _write_index(self, index: Dict[str, Any]) -> None:
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        self.index_path.write_text(json.dumps(index, indent=2))

    def generate_key(self, name: str, password: Optional[str] = None) -> KeyPair:
        """
        Create and store a new identity under name, replacing any key
        already stored under it.
        """
        self.keys_dir.mkdir(parents=True, exist_ok=True)
        key_pair = generate_key_pair()
        private_path, public_path = self._paths(name)

        private_path.write_bytes(serialize_private_key(key_pair.private_key, password))
        os.chmod(private_path, 0o600)
        public_path.write_bytes(serialize_public_key(key_pair.public_key))

        index = self._read_index()
        index["keys"][name] = dict(key_pair.to_dict(), encrypted=bool(password))
        self._write_index(index)
        return key_pair

    def load_key(self, name: str, password: Optional[str] = None) -> KeyPair:
        """
        Raises:
            KeyNotFoundError: No key stored under name
            CryptoError: Wrong or missing password
        """
        private_path, _ = self._paths(name)
        if not private_path.exists():
            raise KeyNotFoundError(f"Key '{name}' not found")

        meta = self._read_index()["keys"].get(name, {})
        private_key = load_private_key(private_path.read_bytes(), password)
        return _key_pair(private_key, meta.get("created_at", ""))

    def address_of(self, name: str) -> str:
        meta = self.list_keys().get(name)
        if meta is None:
            raise KeyNotFoundError(f"Key '{name}' not found")
        return meta["address"]

    def list_keys(self) -> Dict[str, Dict[str, Any]]:
        return self._read_index().get("keys", {})

    def export_public_key(self, name: str) -> str:
        _, public_path = self._paths(name)
        if not public_path.exists():
            raise KeyNotFoundError(f"Public key '{name}' not found")
        return public_path.read_text()

    def find_by_address(self, address: str) -> Tuple[str, Dict[str, Any]]:
        for name, meta in self.list_keys().items():
            if meta.get("address") == address:
                return name, meta
        raise KeyNotFoundError(f"No key with address '{address}'")
