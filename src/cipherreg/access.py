"""
Access control for ciphertext handles

Each handle carries a decryption policy, attached when the handle is bound
to a record. Policies live with the handle, not the identity: replacing a
record's handle never carries a previous disclosure over to the new one.

Policy levels:
- OWNER_ONLY: only the owning identity may decrypt
- OWNER_AND_REGISTRY: the owner, and the registry on behalf of its
  administrator
- PUBLIC: anyone may decrypt (one-way, set by disclosure)
"""

from dataclasses import dataclass, replace, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Tuple

from .errors import NotRegisteredError
from .handles import CiphertextHandle


class AccessPolicy(Enum):
    """Decryption policy attached to a handle."""
    OWNER_ONLY = "owner_only"
    OWNER_AND_REGISTRY = "owner_and_registry"
    PUBLIC = "public"


@dataclass(frozen=True)
class Binding:
    """
    One bind event of a handle.

    generation increases on every bind, so two bindings of byte-equal
    handles are still distinguishable.
    """
    handle: CiphertextHandle
    owner: str
    policy: AccessPolicy
    generation: int
    bound_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handle": self.handle.to_hex(),
            "owner": self.owner,
            "policy": self.policy.value,
            "generation": self.generation,
            "bound_at": self.bound_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Binding":
        return cls(
            handle=CiphertextHandle.from_hex(data["handle"]),
            owner=data["owner"],
            policy=AccessPolicy(data["policy"]),
            generation=data["generation"],
            bound_at=datetime.fromisoformat(data["bound_at"]),
        )


class AccessControlManager:
    """
    Tracks the current binding of every handle the registry manages.

    The manager only computes and validates transitions; the registry
    decides when they happen.
    """

    def __init__(self):
        self._bindings: Dict[CiphertextHandle, Binding] = {}
        self._next_generation = 1

    def bind(self, handle: CiphertextHandle, owner: str) -> AccessPolicy:
        """
        Start a fresh policy lineage for a newly minted or replaced handle.

        Always yields OWNER_AND_REGISTRY, whatever the handle was bound to
        before.
        """
        binding = Binding(
            handle=handle,
            owner=owner,
            policy=AccessPolicy.OWNER_AND_REGISTRY,
            generation=self._next_generation,
        )
        self._next_generation += 1
        self._bindings[handle] = binding
        return binding.policy

    def disclose(self, handle: CiphertextHandle) -> AccessPolicy:
        """
        Make a handle public. Disclosing an already public handle is a no-op.

        Raises:
            NotRegisteredError: If the handle was never bound
        """
        binding = self._require(handle)
        if binding.policy is not AccessPolicy.PUBLIC:
            self._bindings[handle] = replace(binding, policy=AccessPolicy.PUBLIC)
        return AccessPolicy.PUBLIC

    def authorize_decrypt(
        self,
        handle: CiphertextHandle,
        requester: str,
        owner: str,
        is_administrator: bool,
    ) -> bool:
        """
        Check whether requester may obtain the plaintext of handle.

        Args:
            handle: Handle to decrypt
            requester: Identity asking for the plaintext
            owner: Identity the handle belongs to
            is_administrator: Whether requester holds the registry role

        Returns:
            True if the policy grants requester access
        """
        binding = self._bindings.get(handle)
        if binding is None:
            return False

        policy = binding.policy
        if policy is AccessPolicy.PUBLIC:
            return True
        if policy is AccessPolicy.OWNER_AND_REGISTRY:
            return requester == owner or is_administrator
        if policy is AccessPolicy.OWNER_ONLY:
            return requester == owner
        raise ValueError(f"Unhandled access policy: {policy}")

    def policy_of(self, handle: CiphertextHandle) -> Optional[AccessPolicy]:
        binding = self._bindings.get(handle)
        return binding.policy if binding else None

    def binding(self, handle: CiphertextHandle) -> Optional[Binding]:
        return self._bindings.get(handle)

    def _require(self, handle: CiphertextHandle) -> Binding:
        binding = self._bindings.get(handle)
        if binding is None:
            raise NotRegisteredError(f"Handle {handle.short()} is not bound")
        return binding

    def snapshot(self) -> Tuple[Dict[CiphertextHandle, Binding], int]:
        return dict(self._bindings), self._next_generation

    def restore(self, snapshot: Tuple[Dict[CiphertextHandle, Binding], int]) -> None:
        bindings, next_generation = snapshot
        self._bindings = dict(bindings)
        self._next_generation = next_generation

    def to_dict(self) -> Dict[str, Any]:
        return {
            "next_generation": self._next_generation,
            "bindings": [b.to_dict() for b in self._bindings.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessControlManager":
        manager = cls()
        bindings = {}
        for item in data.get("bindings", []):
            binding = Binding.from_dict(item)
            bindings[binding.handle] = binding
        manager.restore((bindings, data.get("next_generation", 1)))
        return manager
