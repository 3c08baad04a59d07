"""
Identity key commands for cipherreg.

Commands: keys
"""

from .utils import fail, get_storage, handle_errors


def cmd_keys(args):
    """Manage identity keys"""
    storage = get_storage()
    key_manager = storage.key_manager

    if args.action == "generate":
        if not args.name:
            fail("A key name is required")
        with handle_errors():
            key_pair = key_manager.generate_key(args.name, password=args.password)
        print(f"Generated identity key: {args.name}")
        print(f"  Address: {key_pair.address}")
        print(f"  Algorithm: Ed25519")

    elif args.action == "list":
        keys = key_manager.list_keys()
        if not keys:
            print("No keys configured.")
            print("Generate a key: cipherreg keys generate NAME")
            return
        print("Identity keys:\n")
        for name, meta in sorted(keys.items()):
            encrypted = " (encrypted)" if meta.get("encrypted") else ""
            print(f"  {name}: {meta.get('address')}{encrypted}")

    elif args.action == "export":
        if not args.name:
            fail("A key name is required")
        with handle_errors():
            print(key_manager.export_public_key(args.name), end="")


def register_key_commands(subparsers):
    keys_parser = subparsers.add_parser("keys", help="Manage identity keys")
    keys_parser.add_argument("action", choices=["generate", "list", "export"])
    keys_parser.add_argument("name", nargs="?", help="Key name")
    keys_parser.add_argument("--password", help="Encrypt the private key with a password")
    keys_parser.set_defaults(func=cmd_keys)
