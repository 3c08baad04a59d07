"""
Basic cipherreg Usage Examples

This file walks through a registry lifecycle and delegated decryption.
"""

from cipherreg import (
    AccessPolicy,
    DelegatedDecryptionClient,
    LocalEncryptionBackend,
    Registry,
    RegistryConfig,
    UnauthorizedError,
    generate_key_pair,
)


def example_register_and_decrypt():
    """Register an encrypted attribute and read it back"""
    print("=== Register and Decrypt ===\n")

    admin = generate_key_pair()
    alice = generate_key_pair()

    backend = LocalEncryptionBackend()
    registry = Registry(RegistryConfig(administrator=admin.address), backend)

    # Client-side encryption plus input proof
    encrypted = backend.create_encrypted_input(30, registry.registry_id, alice.address)
    handle = registry.register_with_ciphertext(
        alice.address, "alice", encrypted.ciphertext, encrypted.proof
    )
    print(f"Registered alice with handle {handle.short(18)}")

    client = DelegatedDecryptionClient(registry, backend, alice)
    print(f"Alice decrypts her own attribute: {client.decrypt_own()}")

    admin_client = DelegatedDecryptionClient(registry, backend, admin)
    print(f"Administrator decrypts it too: {admin_client.decrypt(handle)}\n")


def example_disclosure_lineage():
    """A disclosure belongs to one handle, not to the identity"""
    print("=== Disclosure Lineage ===\n")

    admin = generate_key_pair()
    alice = generate_key_pair()
    bob = generate_key_pair()

    backend = LocalEncryptionBackend()
    registry = Registry(RegistryConfig(administrator=admin.address), backend)
    first = registry.register_with_plain_value(alice.address, "alice", 30)

    registry.disclose_own(alice.address)
    print(f"Disclosed handle: {registry.policy_of(first).value}")
    print(f"Anyone can read it: {backend.public_decrypt(first)}")

    encrypted = backend.create_encrypted_input(31, registry.registry_id, alice.address)
    second = registry.update_attribute(alice.address, encrypted.ciphertext, encrypted.proof)
    assert registry.policy_of(second) is AccessPolicy.OWNER_AND_REGISTRY
    print(f"Replacement handle: {registry.policy_of(second).value}")

    bob_client = DelegatedDecryptionClient(registry, backend, bob)
    try:
        bob_client.decrypt(second)
    except UnauthorizedError as e:
        print(f"Bob is refused: {e}\n")


def example_events():
    """Follow the current handle through the event log"""
    print("=== Event Log ===\n")

    admin = generate_key_pair()
    alice = generate_key_pair()

    registry = Registry(RegistryConfig(administrator=admin.address), LocalEncryptionBackend())
    registry.events.subscribe(
        lambda entry: print(f"  #{entry.sequence} {entry.event_type.value}")
    )

    registry.register_with_plain_value(alice.address, "alice", 30)
    registry.update_display_name(alice.address, "Alice")
    registry.clear(admin.address, alice.address)

    print(f"Latest handle after clear: {registry.events.latest_handle(alice.address)}")
    print(f"Chain valid: {registry.events.verify().valid}\n")


if __name__ == "__main__":
    example_register_and_decrypt()
    example_disclosure_lineage()
    example_events()
