"""
Shared utilities for cipherreg CLI commands.
"""

import sys
from contextlib import contextmanager

from ..crypto import CryptoError
from ..errors import DecryptionError, RegistryError
from ..storage import RegistryStorage, StorageError


def get_storage() -> RegistryStorage:
    """Get RegistryStorage instance for the current project."""
    return RegistryStorage()


def fail(message: str) -> None:
    """Print an error and exit with status 1."""
    print(f"Error: {message}")
    sys.exit(1)


@contextmanager
def handle_errors():
    """Turn library errors into 'Error: ...' and exit status 1."""
    try:
        yield
    except (RegistryError, DecryptionError, StorageError, CryptoError) as e:
        fail(str(e))


def resolve_identity(storage: RegistryStorage, name_or_address: str) -> str:
    """Accept either a 0x address or the name of a stored key."""
    if name_or_address.startswith("0x"):
        return name_or_address
    return storage.key_manager.address_of(name_or_address)


def label_for(storage: RegistryStorage, address: str) -> str:
    """Key name for an address when one is known, else the address."""
    try:
        name, _ = storage.key_manager.find_by_address(address)
        return f"{name} ({address})"
    except CryptoError:
        return address


def format_handle(raw: bytes, length: int = 18) -> str:
    return ("0x" + raw.hex())[:length]
