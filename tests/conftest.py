"""
Shared fixtures for cipherreg tests
"""

import os
import shutil
import tempfile
from pathlib import Path

import pytest

from cipherreg.backend import LocalEncryptionBackend
from cipherreg.config import RegistryConfig
from cipherreg.crypto import generate_key_pair
from cipherreg.registry import Registry

ADMIN = "0x" + "ad" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c0" * 20


@pytest.fixture
def backend():
    return LocalEncryptionBackend()


@pytest.fixture
def registry(backend):
    """Fresh in-memory registry administered by ADMIN"""
    return Registry(RegistryConfig(administrator=ADMIN), backend)


@pytest.fixture
def admin_key():
    return generate_key_pair()


@pytest.fixture
def alice_key():
    return generate_key_pair()


@pytest.fixture
def bob_key():
    return generate_key_pair()


@pytest.fixture
def keyed_registry(backend, admin_key):
    """Registry whose administrator is a real identity key"""
    return Registry(RegistryConfig(administrator=admin_key.address), backend)


@pytest.fixture
def temp_project_dir():
    """Create a temporary directory for testing"""
    temp_dir = tempfile.mkdtemp()
    original_cwd = os.getcwd()
    os.chdir(temp_dir)
    yield Path(temp_dir)
    os.chdir(original_cwd)
    shutil.rmtree(temp_dir)


def register_encrypted(registry, identity, name, value):
    """Register identity through the client-encrypted input path."""
    encrypted = registry.backend.create_encrypted_input(value, registry.registry_id, identity)
    return registry.register_with_ciphertext(identity, name, encrypted.ciphertext, encrypted.proof)


def update_encrypted(registry, identity, value):
    encrypted = registry.backend.create_encrypted_input(value, registry.registry_id, identity)
    return registry.update_attribute(identity, encrypted.ciphertext, encrypted.proof)
