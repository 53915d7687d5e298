#!/usr/bin/env python3
"""
Command line interface for the identity-level extension.

Provides commands for inspecting the profile registry:
    - level: Query the registry for identity levels
    - slots: Resolve transaction pool slot quotas through the extension
    - info: Display configuration and the slot table

Usage:
    txpool-identity level ADDRESS [ADDRESS ...]
    txpool-identity slots [--metrics] ADDRESS [ADDRESS ...]
    txpool-identity info
    txpool-identity --version
"""

import argparse
import dataclasses
import os
import sys

# Ensure src is in path when running from source
if os.path.exists(os.path.join(os.path.dirname(__file__), "account_slots.py")):
    sys.path.insert(0, os.path.dirname(__file__))

from account_slots import AccountSlotsExtension
from config import ConfigurationError, ExtensionConfig
from eth_rpc import EthRpcClient, canonical_address
from identity_levels import ACCOUNT_SLOTS_DEFAULTS
from monitoring.logging import configure_logging
from monitoring.metrics import metrics
from registry_client import ProfileRegistryClient, RegistryUnavailable

__version__ = "0.1.0"


def cmd_level(args, config: ExtensionConfig) -> int:
    """Query the registry directly for each address."""
    status = 0
    with EthRpcClient(config.rpc_endpoint) as rpc:
        registry = ProfileRegistryClient(
            config.profile_registry_addr, rpc, timeout=config.request_timeout
        )

        for raw in args.addresses:
            try:
                address = canonical_address(raw)
            except ValueError as e:
                print(f"{raw}: {e}")
                status = 1
                continue

            try:
                level = registry.lookup(address)
            except RegistryUnavailable as e:
                print(f"{address}: lookup failed ({e.category}): {e}")
                status = 1
                continue

            print(f"{address}: {level.name} ({int(level)})")

    return status


def cmd_slots(args, config: ExtensionConfig) -> int:
    """Resolve slot quotas the way the transaction pool would."""
    # Only the requested accounts, not the configured seeds
    config = dataclasses.replace(config, seed_addresses=())

    status = 0
    with AccountSlotsExtension.from_config(config) as extension:
        for raw in args.addresses:
            try:
                slots = extension.account_slots(raw)
            except ValueError as e:
                print(f"{raw}: {e}")
                status = 1
                continue
            level = extension.get_level(raw)
            print(f"{canonical_address(raw)}: {slots} slots ({level.name})")

    if args.metrics:
        print()
        print(metrics.to_prometheus(), end="")

    return status


def cmd_info(args, config: ExtensionConfig) -> int:
    """Display configuration and the slot table."""
    print("Identity Level Extension")
    print("=" * 40)
    print(f"Version: {__version__}")
    print()
    print("Configuration:")
    print(f"  Profile registry: {config.profile_registry_addr}")
    print(f"  RPC endpoint: {config.rpc_endpoint}")
    print(f"  Update interval: {config.update_interval}s")
    print(f"  Request timeout: {config.request_timeout}s")
    print(f"  Seed addresses: {len(config.seed_addresses)}")
    for address in config.seed_addresses:
        print(f"    {address}")
    print()
    print("Account slots:")
    for level, slots in ACCOUNT_SLOTS_DEFAULTS.items():
        print(f"  {level.name:<13} {slots}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="txpool-identity",
        description="Identity-level slot quotas for the transaction pool",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--rpc-endpoint", help="Ethereum JSON-RPC endpoint")
    parser.add_argument("--registry", help="Profile registry contract address")
    parser.add_argument("--timeout", type=float, help="Registry request timeout in seconds")
    parser.add_argument("--log-level", help="Log level (default: LOG_LEVEL or WARNING)")
    parser.add_argument("--log-file", help="Also write JSON logs to this file")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    level_parser = subparsers.add_parser("level", help="Query identity levels from the registry")
    level_parser.add_argument("addresses", nargs="+", metavar="ADDRESS")

    slots_parser = subparsers.add_parser("slots", help="Resolve account slot quotas")
    slots_parser.add_argument("addresses", nargs="+", metavar="ADDRESS")
    slots_parser.add_argument(
        "--metrics", action="store_true", help="Print collected metrics in Prometheus format"
    )

    subparsers.add_parser("info", help="Display configuration and slot table")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    from dotenv import load_dotenv

    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        level=args.log_level or os.getenv("LOG_LEVEL", "WARNING"),
        log_file=args.log_file,
    )

    commands = {"level": cmd_level, "slots": cmd_slots, "info": cmd_info}
    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return 1

    try:
        config = ExtensionConfig.from_env()
        overrides = {
            "rpc_endpoint": args.rpc_endpoint,
            "profile_registry_addr": args.registry,
            "request_timeout": args.timeout,
        }
        config = dataclasses.replace(
            config, **{k: v for k, v in overrides.items() if v is not None}
        )
        config.validate()
        return command(args, config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
