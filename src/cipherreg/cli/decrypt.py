"""
Delegated decryption command for cipherreg.

Commands: decrypt
"""

from ..delegation import DelegatedDecryptionClient
from ..handles import CiphertextHandle
from .utils import fail, get_storage, handle_errors, label_for, resolve_identity


def cmd_decrypt(args):
    """Decrypt an attribute through a signed credential"""
    storage = get_storage()
    with handle_errors():
        registry = storage.load_registry()

        if args.public:
            if not args.target:
                fail("--public requires --target")
            target = resolve_identity(storage, args.target)
            handle = CiphertextHandle(registry.get_record(target)[2])
            value = registry.backend.public_decrypt(handle)
        else:
            if not args.as_identity:
                fail("--as is required unless --public is given")
            identity_key = storage.key_manager.load_key(args.as_identity, password=args.password)
            client = DelegatedDecryptionClient(
                registry,
                registry.backend,
                identity_key,
                validity_seconds=args.validity,
            )
            if args.target:
                target = resolve_identity(storage, args.target)
                handle = client.current_handle(target)
            else:
                target = client.identity
                handle = client.current_handle()
            value = client.decrypt(handle)

    print(f"{label_for(storage, target)}: {value}")


def register_decrypt_commands(subparsers):
    decrypt_parser = subparsers.add_parser("decrypt", help="Decrypt an attribute")
    decrypt_parser.add_argument("--as", dest="as_identity", help="Key name of the requester")
    decrypt_parser.add_argument("--target", help="Whose attribute to decrypt (default: own)")
    decrypt_parser.add_argument("--public", action="store_true",
                                help="Decrypt a disclosed attribute without a credential")
    decrypt_parser.add_argument("--password", help="Password of an encrypted identity key")
    decrypt_parser.add_argument("--validity", type=int, default=3600,
                                help="Credential validity in seconds (default: 3600)")
    decrypt_parser.set_defaults(func=cmd_decrypt)
