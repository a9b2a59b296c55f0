# Main Entry Point
#
#   skyview serve   run the local API server
#   skyview init    create a new vault (prompts for the master password)
#   skyview sweep   purge expired trash entries
#   skyview stats   print item / folder / trash counts
#
# sweep and stats unlock the vault for the duration of the command only.

import argparse
import getpass
import json
import sys
from pathlib import Path

from . import __version__
from .core import EventSeverity, EventType, configure_audit_logger, get_audit_logger, load_config
from .vault import VaultError


def _unlock(services) -> None:
    services.keys.unlock(getpass.getpass("Master password: "))


def cmd_serve(config, args) -> int:
    from .api.main import start_api_server

    print(f"  Starting API server on {config.api_host}:{config.api_port}...")
    print("  Press Ctrl+C to stop")
    try:
        start_api_server(config)
    except KeyboardInterrupt:
        print("\n\nShutting down backend...")
    return 0


def cmd_init(services, args) -> int:
    if services.keys.is_initialized():
        print("A vault already exists in this data directory.")
        return 1
    credential = getpass.getpass("New master password: ")
    if getpass.getpass("Repeat master password: ") != credential:
        print("Passwords do not match.")
        return 1
    services.initialize_vault(credential)
    print(f"Vault created at {services.config.vault_db_path}")
    return 0


def cmd_sweep(services, args) -> int:
    _unlock(services)
    try:
        purged = services.trash.sweep_expired()
        print(f"Purged {purged} expired trash entr{'y' if purged == 1 else 'ies'}")
        reaped = services.weather_cache.delete_expired() + services.forecast_cache.delete_expired()
        print(f"Removed {reaped} stale weather cache rows")
    finally:
        services.keys.lock()
    return 0


def cmd_stats(services, args) -> int:
    _unlock(services)
    try:
        stats = services.query.stats().to_dict()
    finally:
        services.keys.lock()
    if args.json:
        print(json.dumps(stats, indent=2))
    else:
        print(f"Items:   {stats['total_items']}")
        for item_type, count in sorted(stats["counts_by_type"].items()):
            if count:
                print(f"  {item_type:<11}{count}")
        print(f"Starred: {stats['starred_count']}")
        print(f"Folders: {stats['folder_count']}")
        print(f"Trash:   {stats['trash_count']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="skyview",
        description="SkyView - encrypted local vault",
    )
    parser.add_argument("--env-file", help="Load SKYVIEW_* settings from this .env file")
    parser.add_argument("--data-dir", help="Override SKYVIEW_DATA_DIR")
    parser.add_argument("--version", action="version", version=f"SkyView v{__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the local API server")
    serve.add_argument("--host", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, help="Port (default: 8000)")
    serve.set_defaults(handler=cmd_serve, needs_services=False)

    init = sub.add_parser("init", help="Create a new vault")
    init.set_defaults(handler=cmd_init, needs_services=True)

    sweep = sub.add_parser("sweep", help="Purge expired trash and stale weather cache")
    sweep.set_defaults(handler=cmd_sweep, needs_services=True)

    stats = sub.add_parser("stats", help="Show vault statistics")
    stats.add_argument("--json", action="store_true", help="Print JSON")
    stats.set_defaults(handler=cmd_stats, needs_services=True)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    overrides = {}
    if args.data_dir:
        overrides["data_dir"] = Path(args.data_dir)
    if getattr(args, "host", None):
        overrides["api_host"] = args.host
    if getattr(args, "port", None):
        overrides["api_port"] = args.port
    config = load_config(args.env_file, **overrides)
    if config.audit_log_dir is not None:
        configure_audit_logger(config.audit_log_dir)

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="SkyView command started",
        details={"version": __version__, "command": args.command},
    )

    if not args.needs_services:
        return args.handler(config, args)

    from .services import SkyViewServices

    services = SkyViewServices(config)
    try:
        return args.handler(services, args)
    except VaultError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
