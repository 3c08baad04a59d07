"""
Ciphertext handles

A handle is an opaque, fixed-width reference to a ciphertext held by the
encryption backend. Nothing in cipherreg decodes handle bytes.
"""

import secrets
from dataclasses import dataclass

from .errors import InvalidInputError

HANDLE_SIZE = 32


@dataclass(frozen=True)
class CiphertextHandle:
    """Opaque 32-byte ciphertext reference, compared by value"""
    value: bytes

    def __post_init__(self):
        if not isinstance(self.value, bytes) or len(self.value) != HANDLE_SIZE:
            raise InvalidInputError(
                f"Ciphertext handle must be {HANDLE_SIZE} bytes"
            )

    @classmethod
    def random(cls) -> "CiphertextHandle":
        """Mint a fresh handle."""
        return cls(secrets.token_bytes(HANDLE_SIZE))

    @classmethod
    def from_hex(cls, text: str) -> "CiphertextHandle":
        """Parse a handle from its 0x-prefixed hex form."""
        if text.startswith("0x"):
            text = text[2:]
        try:
            return cls(bytes.fromhex(text))
        except ValueError:
            raise InvalidInputError(f"Not a hex handle: {text!r}")

    def to_hex(self) -> str:
        return "0x" + self.value.hex()

    def short(self, length: int = 10) -> str:
        """Truncated hex for display and logs."""
        return self.to_hex()[:length]

    def __str__(self) -> str:
        return self.to_hex()
