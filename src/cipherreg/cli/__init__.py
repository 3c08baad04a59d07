"""
cipherreg Command Line Interface

Modules:
- registry: Registry commands (init, register, rename, update, disclose,
  clear, transfer-admin, show, events)
- keys: Identity key commands (keys)
- decrypt: Delegated decryption (decrypt)
- utils: Shared utilities
"""

import argparse
import sys

from .. import __version__
from .registry import register_registry_commands
from .keys import register_key_commands
from .decrypt import register_decrypt_commands


def create_parser():
    """Create and configure the argument parser with all commands."""
    parser = argparse.ArgumentParser(
        prog="cipherreg",
        description="cipherreg: Confidential attribute registry"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    register_registry_commands(subparsers)
    register_key_commands(subparsers)
    register_decrypt_commands(subparsers)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    args.func(args)


__all__ = [
    'main',
    'create_parser',
    'register_registry_commands',
    'register_key_commands',
    'register_decrypt_commands',
]
