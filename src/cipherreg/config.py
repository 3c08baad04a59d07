"""
Registry configuration
"""

import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict

from .errors import InvalidInputError

DEFAULT_ATTRIBUTE_MIN = 0
DEFAULT_ATTRIBUTE_MAX = 255  # uint8 attribute domain
DEFAULT_MAX_NAME_LENGTH = 64
DEFAULT_MAX_VALIDITY_SECONDS = 365 * 24 * 3600


def new_registry_id() -> str:
    """Random 20-byte registry identifier in address form."""
    return "0x" + secrets.token_hex(20)


@dataclass
class RegistryConfig:
    """Configuration for a registry instance"""
    administrator: str
    registry_id: str = field(default_factory=new_registry_id)
    chain_id: int = 1
    attribute_min: int = DEFAULT_ATTRIBUTE_MIN
    attribute_max: int = DEFAULT_ATTRIBUTE_MAX
    max_name_length: int = DEFAULT_MAX_NAME_LENGTH
    max_validity_seconds: int = DEFAULT_MAX_VALIDITY_SECONDS
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    version: str = "0.1.0"

    def validate(self) -> None:
        """
        Check the configuration is usable.

        Raises:
            InvalidInputError: On an empty administrator or registry id, or
                inconsistent limits
        """
        if not self.administrator:
            raise InvalidInputError("Administrator identity must not be empty")
        if not self.registry_id:
            raise InvalidInputError("Registry id must not be empty")
        if self.attribute_min > self.attribute_max:
            raise InvalidInputError("attribute_min exceeds attribute_max")
        if self.max_name_length < 1:
            raise InvalidInputError("max_name_length must be positive")
        if self.max_validity_seconds < 1:
            raise InvalidInputError("max_validity_seconds must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "administrator": self.administrator,
            "registry_id": self.registry_id,
            "chain_id": self.chain_id,
            "attribute_min": self.attribute_min,
            "attribute_max": self.attribute_max,
            "max_name_length": self.max_name_length,
            "max_validity_seconds": self.max_validity_seconds,
            "created_at": self.created_at,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryConfig":
        return cls(
            administrator=data["administrator"],
            registry_id=data["registry_id"],
            chain_id=data.get("chain_id", 1),
            attribute_min=data.get("attribute_min", DEFAULT_ATTRIBUTE_MIN),
            attribute_max=data.get("attribute_max", DEFAULT_ATTRIBUTE_MAX),
            max_name_length=data.get("max_name_length", DEFAULT_MAX_NAME_LENGTH),
            max_validity_seconds=data.get("max_validity_seconds", DEFAULT_MAX_VALIDITY_SECONDS),
            created_at=data.get("created_at", datetime.now().isoformat()),
            version=data.get("version", "0.1.0"),
        )
