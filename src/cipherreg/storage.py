"""
cipherreg Storage Module

Persistent storage for a registry project. Manages the .cipherreg/
directory, JSON serialization and file locking for concurrent access.
"""

import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Iterator

from .backend import LocalEncryptionBackend
from .config import RegistryConfig
from .crypto import KeyManager
from .events import EventLog
from .filelock import atomic_write, file_lock
from .logging import get_logger
from .registry import Registry

CIPHERREG_DIR = ".cipherreg"
CONFIG_FILE = "config.json"
STATE_FILE = "state.json"
EVENTS_FILE = "events.jsonl"
BACKEND_DIR = "backend"
BACKEND_FILE = "backend.json"
LOCK_FILE = "registry.lock"

logger = get_logger()


class StorageError(Exception):
    """Base exception for storage errors"""
    pass


class ProjectNotFoundError(StorageError):
    """Raised when no .cipherreg directory is found"""
    pass


class ProjectExistsError(StorageError):
    """Raised when trying to init in existing project"""
    pass


def find_project_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find the .cipherreg directory by searching up from start_path.

    Returns the path containing .cipherreg, or None if not found.
    """
    current = Path(start_path or os.getcwd()).resolve()

    while True:
        if (current / CIPHERREG_DIR).is_dir():
            return current
        if current == current.parent:
            return None
        current = current.parent


class RegistryStorage:
    """
    Manages persistent storage for a registry project.

    Directory structure:
        .cipherreg/
        ├── config.json          # RegistryConfig
        ├── state.json           # Records, bindings, administrator
        ├── events.jsonl         # Hash-chained event log
        ├── keys/                # Identity keys (KeyManager)
        └── backend/
            └── backend.json     # Local encryption backend (private)
    """

    def __init__(self, project_path: Optional[Path] = None):
        """
        Args:
            project_path: Path to project root. If None, searches up from cwd.
        """
        if project_path:
            self.project_root = Path(project_path).resolve()
        else:
            self.project_root = find_project_root() or Path.cwd().resolve()

        self.cipherreg_dir = self.project_root / CIPHERREG_DIR
        self.config_path = self.cipherreg_dir / CONFIG_FILE
        self.state_path = self.cipherreg_dir / STATE_FILE
        self.events_path = self.cipherreg_dir / EVENTS_FILE
        self.backend_path = self.cipherreg_dir / BACKEND_DIR / BACKEND_FILE
        self.lock_path = self.cipherreg_dir / LOCK_FILE

    @property
    def key_manager(self) -> KeyManager:
        return KeyManager(self.cipherreg_dir)

    def is_initialized(self) -> bool:
        return self.config_path.is_file()

    def _require_initialized(self) -> None:
        if not self.is_initialized():
            raise ProjectNotFoundError(
                "No cipherreg project found. Run 'cipherreg init' first."
            )

    def init_project(
        self,
        administrator: str,
        chain_id: int = 1,
        force: bool = False,
    ) -> RegistryConfig:
        """
        Create a new registry project with a fresh local backend.

        Raises:
            ProjectExistsError: If a project exists and force is False
        """
        if self.is_initialized() and not force:
            raise ProjectExistsError(
                f"cipherreg project already exists at {self.cipherreg_dir}"
            )

        self.cipherreg_dir.mkdir(parents=True, exist_ok=True)
        config = RegistryConfig(administrator=administrator, chain_id=chain_id)
        config.validate()

        with file_lock(self.lock_path):
            self.save_config(config)
            backend = LocalEncryptionBackend(max_validity_seconds=config.max_validity_seconds)
            self.save_registry(Registry(config, backend))

        logger.info("Initialized registry project", registry_id=config.registry_id)
        return config

    def save_config(self, config: RegistryConfig) -> None:
        atomic_write(self.config_path, json.dumps(config.to_dict(), indent=2))

    def load_config(self) -> RegistryConfig:
        self._require_initialized()
        with open(self.config_path, "r") as f:
            return RegistryConfig.from_dict(json.load(f))

    def load_backend(self) -> LocalEncryptionBackend:
        if not self.backend_path.exists():
            raise StorageError(f"Backend state missing: {self.backend_path}")
        with open(self.backend_path, "r") as f:
            return LocalEncryptionBackend.from_dict(json.load(f))

    def load_events(self) -> EventLog:
        if not self.events_path.exists():
            return EventLog()
        with open(self.events_path, "r") as f:
            return EventLog.from_lines(f)

    def load_registry(self) -> Registry:
        """Rebuild the registry, its backend and event log from disk."""
        config = self.load_config()
        backend = self.load_backend()

        state = {}
        if self.state_path.exists():
            with open(self.state_path, "r") as f:
                state = json.load(f)

        return Registry.from_state(config, backend, state, events=self.load_events())

    def save_registry(self, registry: Registry) -> None:
        atomic_write(self.state_path, json.dumps(registry.export_state(), indent=2))
        lines = registry.events.to_lines()
        atomic_write(self.events_path, "".join(line + "\n" for line in lines))
        if isinstance(registry.backend, LocalEncryptionBackend):
            # Holds the backend's private keys
            atomic_write(
                self.backend_path,
                json.dumps(registry.backend.to_dict(), indent=2),
                mode=0o600,
            )

    @contextmanager
    def session(self) -> Iterator[Registry]:
        """
        Load the registry under an exclusive lock and save it on success.

        Usage:
            with storage.session() as registry:
                registry.disclose_own(alice)
        """
        self._require_initialized()
        with file_lock(self.lock_path):
            registry = self.load_registry()
            yield registry
            self.save_registry(registry)
