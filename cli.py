#!/usr/bin/env python3
"""Simple CLI for driving a TEN session key locally"""

import argparse
import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from tensession.config import settings
from tensession.core.errors import SessionKeyError
from tensession.core.execution import TransactionIntent
from tensession.core.wallet import DeletionState, SessionKeyEngine, SessionKeyState
from tensession.logging_config import bind_session, setup_logging
from tensession.providers import BearerTokenCache, HttpRpcProvider
from tensession.providers.token import TOKEN_KEY, TOKEN_TIMESTAMP_KEY
from tensession.services.address import shorten_address
from tensession.services.units import format_balance, format_ether, parse_ether
from tensession.storage import KeyValueStore, build_store


DEFAULT_STATE_PATH = Path.home() / ".tensession" / "state.json"


def print_state(state: SessionKeyState):
    """Pretty print the session key state"""
    print("\n🔑 Session Key")
    print("=" * 50)
    if not state.session_key:
        print("No session key. Run `create` first.")
        return

    print(f"Address: {state.session_key}")
    print(f"Active:  {'yes' if state.is_active else 'no'}")
    if state.balance:
        print(f"Balance: {format_balance(state.balance.eth)} ETH")
        if state.balance.estimated_transactions:
            print(f"         ~{state.balance.estimated_transactions} transactions left")
    if state.deletion_state != DeletionState.IDLE:
        print(f"Deletion: {state.deletion_state.value}")
    if state.error:
        print(f"Last error: {state.error}")


@asynccontextmanager
async def open_engine(store: KeyValueStore) -> AsyncIterator[SessionKeyEngine]:
    """Authenticate against the gateway and hand out an engine bound to it."""
    tokens = BearerTokenCache(store)
    provider = None
    try:
        rpc_url = await tokens.authenticated_rpc_url()
        provider = HttpRpcProvider(rpc_url)
        engine = SessionKeyEngine(store=store)
        await engine.init_session(provider)
        bind_session(engine.session_key)
        yield engine
    finally:
        if provider is not None:
            await provider.close()
        await tokens.close()


async def cli_token(store: KeyValueStore, rotate: bool = False):
    tokens = BearerTokenCache(store)
    try:
        if rotate:
            tokens.clear()
        token = await tokens.get_token()
    finally:
        await tokens.close()
    print(f"🎟️  Token: {token}")
    print(f"RPC URL: {tokens.rpc_url}?token={token}")


def cli_chain():
    print("\n⛓️  Network")
    print("=" * 50)
    for key, value in settings.summary().items():
        print(f"{key:<10} {value}")
    print(f"{'explorer':<10} {settings.explorer_url}")


async def cli_create(store: KeyValueStore):
    async with open_engine(store) as engine:
        session_key = await engine.start_session()
        bind_session(session_key)
        print(f"✅ Session key ready: {session_key}")
        print_state(engine.state)


async def cli_balance(store: KeyValueStore):
    async with open_engine(store) as engine:
        await engine.update_balance()
        print_state(engine.state)


async def cli_fund(store: KeyValueStore, amount: str, from_address: str):
    async with open_engine(store) as engine:
        print(f"💸 Funding {shorten_address(engine.session_key or '')} with {amount} ETH...")
        tx_hash = await engine.fund_session(amount, from_address)
        print(f"✅ Funded: {settings.explorer_url}/tx/{tx_hash}")
        print_state(engine.state)


async def cli_send(store: KeyValueStore, to: str, value: Optional[str], data: Optional[str]):
    intent = TransactionIntent(
        to=to,
        value=parse_ether(value) if value else None,
        data=data,
    )
    async with open_engine(store) as engine:
        tx_hash = await engine.send_transaction(intent)
        print(f"📤 Submitted: {tx_hash}")
        receipt = await engine.poller.await_receipt(tx_hash)
        print(f"✅ Confirmed in block {receipt.block_number}")
        await engine.update_balance()
        print_state(engine.state)


async def cli_withdraw(store: KeyValueStore, recipient: str, amount: Optional[str]):
    async with open_engine(store) as engine:
        if amount:
            result = await engine.withdraw_amount(amount, recipient)
        else:
            result = await engine.withdraw_from_session_key(recipient)

        if result.tx_hash:
            print(f"✅ Withdrew {format_balance(format_ether(result.amount_wei))} ETH: {result.tx_hash}")
        else:
            print("ℹ️  Nothing to withdraw above the gas reserve")
        print_state(engine.state)


async def cli_delete(store: KeyValueStore, address: str):
    async with open_engine(store) as engine:
        print("🗑️  Withdrawing funds and closing session...")
        final_state = await engine.confirm_delete_session(address)
        if final_state == DeletionState.COMPLETED:
            print("✅ Session closed")
        else:
            print(f"❌ Session not closed: {engine.state.deletion_error}")
            engine.reset_deletion_state()


async def cli_cleanup(store: KeyValueStore):
    async with open_engine(store) as engine:
        await engine.cleanup_session_key()
        print("🧹 Session keys cleaned up")


def cli_clear(store: KeyValueStore):
    SessionKeyEngine(store=store).clear_state()
    store.remove(TOKEN_KEY)
    store.remove(TOKEN_TIMESTAMP_KEY)
    print("Local state cleared.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="TEN session key CLI")
    parser.add_argument("--state", help=f"State file (default: {DEFAULT_STATE_PATH})")
    parser.add_argument("--log-level", help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command")

    token_parser = subparsers.add_parser("token", help="Show the bearer token for the TEN RPC")
    token_parser.add_argument("--rotate", action="store_true", help="Discard the cached token first")

    subparsers.add_parser("chain", help="Show network settings")
    subparsers.add_parser("create", help="Create (or reuse) the session key")
    subparsers.add_parser("balance", help="Refresh and show the session key balance")

    fund_parser = subparsers.add_parser("fund", help="Fund the session key from a wallet")
    fund_parser.add_argument("amount", help="Amount in ETH")
    fund_parser.add_argument("--from", dest="from_address", required=True, help="Funding wallet address")

    send_parser = subparsers.add_parser("send", help="Send a transaction signed by the session key")
    send_parser.add_argument("to", help="Recipient or contract address")
    send_parser.add_argument("--value", help="Value in ETH")
    send_parser.add_argument("--data", help="Hex calldata")

    withdraw_parser = subparsers.add_parser("withdraw", help="Withdraw funds back to a wallet")
    withdraw_parser.add_argument("recipient", help="Recipient address")
    withdraw_parser.add_argument("--amount", help="Amount in ETH (default: everything above the gas reserve)")

    delete_parser = subparsers.add_parser("delete", help="Withdraw everything, then delete the session key")
    delete_parser.add_argument("address", help="Address that receives the remaining funds")

    subparsers.add_parser("cleanup", help="Delete gateway session keys without knowing their address")
    subparsers.add_parser("clear", help="Forget the local session key and token")

    return parser


async def main(argv: Optional[list] = None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    setup_logging(args.log_level)
    store = build_store(settings, path=args.state or settings.storage_path or DEFAULT_STATE_PATH)
    command = args.command.lower()

    try:
        if command == "token":
            await cli_token(store, args.rotate)

        elif command == "chain":
            cli_chain()

        elif command == "create":
            await cli_create(store)

        elif command == "balance":
            await cli_balance(store)

        elif command == "fund":
            await cli_fund(store, args.amount, args.from_address)

        elif command == "send":
            await cli_send(store, args.to, args.value, args.data)

        elif command == "withdraw":
            await cli_withdraw(store, args.recipient, args.amount)

        elif command == "delete":
            await cli_delete(store, args.address)

        elif command == "cleanup":
            await cli_cleanup(store)

        elif command == "clear":
            cli_clear(store)

        else:
            print(f"❌ Unknown command: {command}")
            parser.print_help()

    except SessionKeyError as e:
        print(f"❌ Error: {e}")
        if e.context.suggested_action:
            print(f"   {e.context.suggested_action}")


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
