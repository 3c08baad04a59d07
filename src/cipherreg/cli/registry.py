"""
Registry CLI commands for cipherreg.

Commands: init, register, rename, update, disclose, clear, transfer-admin,
show, events
"""

from ..backend import LocalEncryptionBackend
from ..crypto import KeyNotFoundError
from ..events import EventType
from ..handles import CiphertextHandle
from ..storage import ProjectExistsError
from .utils import (
    fail,
    format_handle,
    get_storage,
    handle_errors,
    label_for,
    resolve_identity,
)


def _encrypted_input(registry, value, caller):
    backend = registry.backend
    if not isinstance(backend, LocalEncryptionBackend):
        fail("This project's backend cannot encrypt client inputs")
    with handle_errors():
        return backend.create_encrypted_input(value, registry.registry_id, caller)


def cmd_init(args):
    """Initialize a new registry project"""
    storage = get_storage()
    key_manager = storage.key_manager

    try:
        administrator = key_manager.address_of(args.admin)
    except KeyNotFoundError:
        administrator = key_manager.generate_key(args.admin).address
        print(f"Generated identity key: {args.admin}")

    try:
        config = storage.init_project(administrator, chain_id=args.chain_id, force=args.force)
    except ProjectExistsError as e:
        fail(str(e))

    print(f"Initialized cipherreg registry: {config.registry_id}")
    print(f"  Administrator: {args.admin} ({administrator})")


def cmd_register(args):
    """Register the acting identity"""
    storage = get_storage()
    with handle_errors():
        caller = resolve_identity(storage, args.as_identity)
        with storage.session() as registry:
            if args.plain:
                handle = registry.register_with_plain_value(caller, args.name, args.value)
            else:
                encrypted = _encrypted_input(registry, args.value, caller)
                handle = registry.register_with_ciphertext(
                    caller, args.name, encrypted.ciphertext, encrypted.proof
                )
    print(f"Registered {args.name}: {handle.short(18)}")


def cmd_rename(args):
    """Change the acting identity's display name"""
    storage = get_storage()
    with handle_errors():
        caller = resolve_identity(storage, args.as_identity)
        with storage.session() as registry:
            registry.update_display_name(caller, args.name)
    print(f"Display name set to: {args.name}")


def cmd_update(args):
    """Replace the acting identity's attribute"""
    storage = get_storage()
    with handle_errors():
        caller = resolve_identity(storage, args.as_identity)
        with storage.session() as registry:
            encrypted = _encrypted_input(registry, args.value, caller)
            handle = registry.update_attribute(caller, encrypted.ciphertext, encrypted.proof)
    print(f"Attribute updated: {handle.short(18)}")


def cmd_disclose(args):
    """Make an attribute public"""
    storage = get_storage()
    with handle_errors():
        caller = resolve_identity(storage, args.as_identity)
        with storage.session() as registry:
            if args.target:
                target = resolve_identity(storage, args.target)
                registry.disclose_for(caller, target)
            else:
                target = caller
                registry.disclose_own(caller)
    print(f"Disclosed attribute of {label_for(storage, target)}")


def cmd_clear(args):
    """Administrator: clear a record"""
    storage = get_storage()
    with handle_errors():
        caller = resolve_identity(storage, args.as_identity)
        target = resolve_identity(storage, args.target)
        with storage.session() as registry:
            registry.clear(caller, target)
    print(f"Cleared record of {label_for(storage, target)}")


def cmd_transfer_admin(args):
    """Administrator: transfer the role"""
    storage = get_storage()
    with handle_errors():
        caller = resolve_identity(storage, args.as_identity)
        new_admin = resolve_identity(storage, args.new_admin)
        with storage.session() as registry:
            registry.transfer_administrator(caller, new_admin)
    print(f"Administrator is now {label_for(storage, new_admin)}")


def cmd_show(args):
    """Show records"""
    storage = get_storage()
    with handle_errors():
        registry = storage.load_registry()
        if args.identity:
            identities = [resolve_identity(storage, args.identity)]
        else:
            identities = sorted(registry.export_state()["records"])

    print(f"Registry {registry.registry_id}")
    print(f"Administrator: {label_for(storage, registry.administrator)}\n")

    if not identities:
        print("No records.")
        return

    for identity in identities:
        present, name, raw = registry.get_record(identity)
        status = "registered" if present else "unregistered"
        policy = registry.policy_of(CiphertextHandle(raw)) if present else None
        print(f"  {label_for(storage, identity)}: {status}")
        if present:
            print(f"      Name: {name}")
            print(f"      Handle: {format_handle(raw)}")
            print(f"      Policy: {policy.value if policy else 'unbound'}")


def cmd_events(args):
    """Show the event log"""
    storage = get_storage()
    with handle_errors():
        events = storage.load_events()

    if args.verify:
        result = events.verify()
        if result.valid:
            print(f"Event log valid ({result.entries_checked} entries)")
            return
        fail(f"Event log invalid: {result.error}")

    if not len(events):
        print("No events.")
        return

    for entry in events:
        detail = ""
        if entry.event_type is EventType.REGISTERED:
            detail = f" name={entry.display_name} handle={entry.handle.short(18)}"
        elif entry.event_type is EventType.DISCLOSED:
            detail = f" handle={entry.handle.short(18)}"
        elif entry.event_type is EventType.DISPLAY_NAME_UPDATED:
            detail = f" name={entry.display_name}"
        elif entry.event_type is EventType.ADMINISTRATOR_TRANSFERRED:
            detail = f" previous={entry.data.get('previous')}"
        print(f"#{entry.sequence} {entry.event_type.value} {entry.identity}{detail}")


def _add_actor(parser):
    parser.add_argument("--as", dest="as_identity", required=True,
                        help="Acting identity (key name or 0x address)")


def register_registry_commands(subparsers):
    init_parser = subparsers.add_parser("init", help="Initialize a registry project")
    init_parser.add_argument("--admin", default="admin", help="Key name of the administrator")
    init_parser.add_argument("--chain-id", type=int, default=1)
    init_parser.add_argument("--force", action="store_true", help="Reinitialize an existing project")
    init_parser.set_defaults(func=cmd_init)

    register_parser = subparsers.add_parser("register", help="Register with a name and attribute")
    _add_actor(register_parser)
    register_parser.add_argument("name", help="Display name")
    register_parser.add_argument("value", type=int, help="Attribute value")
    register_parser.add_argument("--plain", action="store_true",
                                 help="Let the backend encrypt the value directly")
    register_parser.set_defaults(func=cmd_register)

    rename_parser = subparsers.add_parser("rename", help="Change display name")
    _add_actor(rename_parser)
    rename_parser.add_argument("name", help="New display name")
    rename_parser.set_defaults(func=cmd_rename)

    update_parser = subparsers.add_parser("update", help="Replace the attribute")
    _add_actor(update_parser)
    update_parser.add_argument("value", type=int, help="New attribute value")
    update_parser.set_defaults(func=cmd_update)

    disclose_parser = subparsers.add_parser("disclose", help="Make an attribute public")
    _add_actor(disclose_parser)
    disclose_parser.add_argument("--target", help="Identity to disclose (administrator only)")
    disclose_parser.set_defaults(func=cmd_disclose)

    clear_parser = subparsers.add_parser("clear", help="Clear a record (administrator only)")
    _add_actor(clear_parser)
    clear_parser.add_argument("target", help="Identity to clear")
    clear_parser.set_defaults(func=cmd_clear)

    transfer_parser = subparsers.add_parser("transfer-admin", help="Transfer the administrator role")
    _add_actor(transfer_parser)
    transfer_parser.add_argument("new_admin", help="New administrator")
    transfer_parser.set_defaults(func=cmd_transfer_admin)

    show_parser = subparsers.add_parser("show", help="Show records")
    show_parser.add_argument("identity", nargs="?", help="Only this identity")
    show_parser.set_defaults(func=cmd_show)

    events_parser = subparsers.add_parser("events", help="Show the event log")
    events_parser.add_argument("--verify", action="store_true", help="Verify the hash chain")
    events_parser.set_defaults(func=cmd_events)
