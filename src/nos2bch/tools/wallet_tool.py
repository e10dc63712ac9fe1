#!/usr/bin/env python3
"""nos2bch wallet tool — manage the stored key, check balance, list UTXOs.

    # Generate and store a new key (prints nsec, npub and BCH address)
    nos2bch-tool generate

    # Import an existing key (nsec1... or 64 hex characters)
    nos2bch-tool import <nsec_or_hex>

    # Show the identity of the stored key
    nos2bch-tool whoami

    # Check the balance / UTXOs of a CashAddr address
    nos2bch-tool balance <address>
    nos2bch-tool utxos <address>

    # List or forget remembered permissions
    nos2bch-tool policies
    nos2bch-tool forget <host> <allow|deny> <operation>

Settings come from ``NOS2BCH_*`` environment variables.
"""

from __future__ import annotations

import asyncio
import sys
from typing import TYPE_CHECKING

from nos2bch.chain.ledger import LedgerClient
from nos2bch.config.settings import AppConfig
from nos2bch.dispatcher.operations import describe_operation
from nos2bch.errors import AgentError
from nos2bch.nostr import nip19
from nos2bch.options import OptionsService
from nos2bch.policy.store import PolicyStore
from nos2bch.storage.client import create_storage

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from nos2bch.storage.client import Storage


def _print_identity(identity: dict[str, str], secret_hex: str | None = None) -> None:
    print("=" * 60)
    if secret_hex:
        print(f"nsec:     {nip19.nsec_encode(secret_hex)}")
    print(f"npub:     {identity['npub']}")
    print(f"pubkey:   {identity['pubkey']}")
    print(f"address:  {identity['address']}")
    print("=" * 60)


async def _with_options(config: AppConfig, fn: Callable[[OptionsService, Storage], Awaitable[None]]) -> None:
    storage = create_storage(config.storage)
    await storage.open()
    try:
        options = OptionsService(storage, PolicyStore(storage), address_prefix=config.address_prefix)
        await fn(options, storage)
    finally:
        await storage.close()


def _cmd_generate(config: AppConfig) -> None:
    """Generate and store a new key."""

    async def _run(options: OptionsService, storage: Storage) -> None:
        identity = await options.generate_private_key()
        _print_identity(identity, await storage.get("private_key"))
        print()
        print("Send BCH to the address above to fund tips.")

    asyncio.run(_with_options(config, _run))


def _cmd_import(config: AppConfig, value: str) -> None:
    async def _run(options: OptionsService, _storage: Storage) -> None:
        _print_identity(await options.set_private_key(value))

    asyncio.run(_with_options(config, _run))


def _cmd_whoami(config: AppConfig) -> None:
    async def _run(options: OptionsService, _storage: Storage) -> None:
        _print_identity(await options.get_identity())

    asyncio.run(_with_options(config, _run))


def _cmd_balance(config: AppConfig, address: str) -> None:
    """Check the balance of an address (bypassing the cache)."""

    async def _run(_options: OptionsService, storage: Storage) -> None:
        ledger = LedgerClient(config.ledger, storage)
        await ledger.connect()
        try:
            sats = await ledger.get_balance(address, force_refresh=True)
            print(f"Address:  {address}")
            print(f"Balance:  {sats:>12,} sats  ({sats / 1e8:.8f} BCH)")
        finally:
            await ledger.close()

    asyncio.run(_with_options(config, _run))


def _cmd_utxos(config: AppConfig, address: str) -> None:
    """List UTXOs for an address."""

    async def _run(_options: OptionsService, storage: Storage) -> None:
        ledger = LedgerClient(config.ledger, storage)
        await ledger.connect()
        try:
            utxos = await ledger.get_utxos(address)
            if not utxos:
                print(f"No UTXOs found for {address}")
                return
            print(f"UTXOs for {address}:")
            print("-" * 80)
            total = 0
            for u in utxos:
                conf = f"height={u.height}" if u.height > 0 else "unconfirmed"
                token = "  [token]" if u.token_data else ""
                print(f"  {u.txid}:{u.vout}  {u.value:>12,} sats  ({conf}){token}")
                total += u.value
            print("-" * 80)
            print(f"  Total: {total:>12,} sats  ({total / 1e8:.8f} BCH)  [{len(utxos)} UTXOs]")
        finally:
            await ledger.close()

    asyncio.run(_with_options(config, _run))


def _cmd_policies(config: AppConfig) -> None:
    async def _run(options: OptionsService, _storage: Storage) -> None:
        entries = await options.list_policies()
        if not entries:
            print("No remembered permissions")
            return
        for e in entries:
            answer = "allow" if e.accept else "deny"
            print(f"  {e.host:<30} {answer:<6} {e.operation:<14} {e.condition.to_dict() or 'always'}")
            print(f"      ({describe_operation(e.operation)})")

    asyncio.run(_with_options(config, _run))


def _cmd_forget(config: AppConfig, host: str, answer: str, operation: str) -> None:
    async def _run(options: OptionsService, _storage: Storage) -> None:
        await options.remove_policy(host, answer == "allow", operation)
        print(f"Forgot {answer} {operation} for {host}")

    asyncio.run(_with_options(config, _run))


def _dispatch(config: AppConfig, cmd: str, args: list[str]) -> None:
    if cmd == "generate":
        _cmd_generate(config)
    elif cmd == "import" and len(args) == 1:
        _cmd_import(config, args[0])
    elif cmd == "whoami":
        _cmd_whoami(config)
    elif cmd == "balance" and len(args) == 1:
        _cmd_balance(config, args[0])
    elif cmd == "utxos" and len(args) == 1:
        _cmd_utxos(config, args[0])
    elif cmd == "policies":
        _cmd_policies(config)
    elif cmd == "forget" and len(args) == 3 and args[1] in ("allow", "deny"):
        _cmd_forget(config, *args)
    else:
        print(f"Unknown command or wrong arguments: {' '.join(sys.argv[1:])}")
        print(__doc__)
        sys.exit(1)


def main() -> None:
    """CLI entry point."""
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)

    config = AppConfig()
    cmd = sys.argv[1].lower()
    args = sys.argv[2:]

    try:
        _dispatch(config, cmd, args)
    except AgentError as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
