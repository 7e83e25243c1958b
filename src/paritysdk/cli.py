"""
Parity CLI

Thin command-line shell over ParityClient.  Configuration comes from the
environment or a .env file (see paritysdk.config).

Commands:
  whoami          - Show the wallet address for PRIVATE_KEY
  token info      - Token name, symbol, decimals, supply
  token balance   - Token balance of an address
  token transfer  - Send tokens
  stake info      - Stake record of a device
  stake deposit   - Approve and stake tokens for a device
  stake withdraw  - Withdraw staked tokens
  logs transfers  - List Transfer events
"""

from __future__ import annotations

import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import NoReturn, Optional

import click

from .client import ParityClient
from .errors import ParityError
from .types import BlockRange, PendingTransaction


# ============ Constants ============

VERSION = "0.3.0"


# ============ Helpers ============


def _client(ctx: click.Context) -> ParityClient:
    """Build the client once per invocation and close it when the command ends."""
    obj = ctx.ensure_object(dict)
    if "client" not in obj:
        client = ParityClient.from_env(
            obj.get("env_file"),
            transport=obj.get("transport"),
            rpc_url=obj.get("rpc_url"),
        )
        ctx.call_on_close(client.close)
        obj["client"] = client
    return obj["client"]


def _fail(exc: Exception) -> NoReturn:
    click.secho(f"ERROR: {exc}", fg="red")
    sys.exit(getattr(exc, "exit_code", 1))


def to_base_units(amount: str, decimals: int) -> int:
    """Convert a human amount ("1.5") into exact base units."""
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise click.BadParameter(f"not a number: {amount}") from None
    if value <= 0:
        raise click.BadParameter("amount must be positive")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise click.BadParameter(f"more than {decimals} decimal places: {amount}")
    return int(scaled)


def from_base_units(value: int, decimals: int) -> str:
    return f"{Decimal(value).scaleb(-decimals):f}"


def _report(client: ParityClient, tx: PendingTransaction, wait: bool) -> None:
    click.echo(click.style("  TX: ", dim=True) + tx.tx_hash)
    if not wait:
        return
    receipt = client.wait_mined(tx)
    if receipt.succeeded:
        click.secho(f"  Mined in block {receipt.block_number}", fg="green")
    else:
        click.secho("  Transaction reverted", fg="red")
        sys.exit(5)


# ============ Main CLI Group ============


@click.group()
@click.version_option(version=VERSION, prog_name="parity")
@click.option("--rpc-url", envvar="PARITY_RPC_URL", default=None, help="JSON-RPC endpoint")
@click.option(
    "--env-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Load configuration from this .env file",
)
@click.option("--verbose", "-v", is_flag=True, help="Log RPC traffic and transactions")
@click.pass_context
def cli(ctx: click.Context, rpc_url: Optional[str], env_file: Optional[Path], verbose: bool) -> None:
    """Parity token and staking client."""
    obj = ctx.ensure_object(dict)
    obj["rpc_url"] = rpc_url
    obj["env_file"] = env_file
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.pass_context
def whoami(ctx: click.Context) -> None:
    """Show current wallet identity."""
    try:
        client = _client(ctx)
    except (ParityError, ValueError) as exc:
        _fail(exc)
    if client.connection.credential is None:
        click.echo("No wallet configured.")
        click.echo("Set PRIVATE_KEY in the environment or .env file.")
        sys.exit(1)
    click.echo(f"Address: {client.address}")


# ============ Token ============


@cli.group()
def token() -> None:
    """ParityToken operations."""


@token.command("info")
@click.pass_context
def token_info(ctx: click.Context) -> None:
    """Show token metadata."""
    try:
        client = _client(ctx)
        info = client.get_token_info()
        supply = client.get_total_supply()
    except (ParityError, ValueError) as exc:
        _fail(exc)

    click.echo(f"=== {info.symbol} ===")
    click.echo(click.style("  Name:     ", dim=True) + info.name)
    click.echo(click.style("  Symbol:   ", dim=True) + info.symbol)
    click.echo(click.style("  Decimals: ", dim=True) + str(info.decimals))
    click.echo(click.style("  Supply:   ", dim=True) + from_base_units(supply, info.decimals))
    click.echo(click.style("  Address:  ", dim=True) + client.token.address)


@token.command("balance")
@click.argument("address", required=False)
@click.pass_context
def token_balance(ctx: click.Context, address: Optional[str]) -> None:
    """Show the token balance of ADDRESS (default: own wallet)."""
    try:
        client = _client(ctx)
        if address is None and client.connection.credential is None:
            raise click.UsageError("Give an ADDRESS or configure PRIVATE_KEY.")
        target = address or client.address
        info = client.get_token_info()
        balance = client.get_balance(target)
    except (ParityError, ValueError) as exc:
        _fail(exc)

    click.echo(
        click.style(f"  {target}: ", dim=True)
        + click.style(f"{from_base_units(balance, info.decimals)} {info.symbol}", fg="bright_white")
    )


@token.command("transfer")
@click.option("--to", "recipient", required=True, help="Recipient address (0x...)")
@click.option("--amount", required=True, help="Amount in human-readable units (e.g. 1.5)")
@click.option("--wait/--no-wait", default=True, help="Wait for the transaction to be mined")
@click.pass_context
def token_transfer(ctx: click.Context, recipient: str, amount: str, wait: bool) -> None:
    """Transfer tokens from the wallet to a recipient."""
    try:
        client = _client(ctx)
        decimals = client.token.decimals()
        raw_amount = to_base_units(amount, decimals)
        click.echo(f"  Sending {amount} ({raw_amount} raw) to {recipient}...")
        tx = client.transfer(recipient, raw_amount)
        _report(client, tx, wait)
    except (ParityError, ValueError) as exc:
        _fail(exc)


# ============ Stake ============


@cli.group()
def stake() -> None:
    """StakeWallet operations (keyed by device ID)."""


@stake.command("info")
@click.argument("device_id")
@click.pass_context
def stake_info(ctx: click.Context, device_id: str) -> None:
    """Show the stake record of DEVICE_ID."""
    try:
        client = _client(ctx)
        record = client.get_stake_info(device_id)
    except (ParityError, ValueError) as exc:
        _fail(exc)

    if not record.exists:
        click.echo(f"No stake recorded for {device_id}.")
        return
    click.echo(click.style("  Device: ", dim=True) + record.device_id)
    click.echo(click.style("  Wallet: ", dim=True) + record.wallet_address)
    click.echo(click.style("  Amount: ", dim=True) + str(record.amount))


@stake.command("deposit")
@click.option("--device-id", required=True, help="Device the stake is recorded under")
@click.option("--amount", required=True, type=int, help="Amount in base units")
@click.option("--timeout", default=None, type=float, help="Seconds to wait for the approval")
@click.option("--wait/--no-wait", default=True, help="Wait for the stake transaction to be mined")
@click.pass_context
def stake_deposit(ctx: click.Context, device_id: str, amount: int, timeout: Optional[float], wait: bool) -> None:
    """Approve the stake contract and stake AMOUNT for a device."""
    try:
        client = _client(ctx)
        click.echo(f"  Approving and staking {amount} for {device_id}...")
        tx = client.add_funds(amount, device_id, timeout=timeout)
        _report(client, tx, wait)
    except (ParityError, ValueError) as exc:
        _fail(exc)


@stake.command("withdraw")
@click.option("--device-id", required=True, help="Device to withdraw from")
@click.option("--amount", required=True, type=int, help="Amount in base units")
@click.option("--wait/--no-wait", default=True, help="Wait for the transaction to be mined")
@click.pass_context
def stake_withdraw(ctx: click.Context, device_id: str, amount: int, wait: bool) -> None:
    """Withdraw AMOUNT of staked tokens from a device."""
    try:
        client = _client(ctx)
        tx = client.withdraw_funds(device_id, amount)
        _report(client, tx, wait)
    except (ParityError, ValueError) as exc:
        _fail(exc)


# ============ Logs ============


@cli.group()
def logs() -> None:
    """Historical contract events."""


@logs.command("transfers")
@click.option("--from-block", default=0, type=int, help="First block to scan")
@click.option("--to-block", default=None, type=int, help="Last block to scan (default: latest)")
@click.option("--address", default=None, help="Only transfers from or to this address")
@click.pass_context
def logs_transfers(ctx: click.Context, from_block: int, to_block: Optional[int], address: Optional[str]) -> None:
    """List Transfer events."""
    blocks = BlockRange(from_block, "latest" if to_block is None else to_block)
    try:
        client = _client(ctx)
        if address:
            # Two queries: indexed fields combine with AND on the node.
            events = list(client.token.transfers(senders=[address], blocks=blocks))
            events += list(client.token.transfers(recipients=[address], blocks=blocks))
            events.sort(key=lambda e: (e.meta.block_number, e.meta.log_index))
        else:
            events = list(client.token.transfers(blocks=blocks))
    except (ParityError, ValueError) as exc:
        _fail(exc)

    if not events:
        click.echo("No transfers found.")
        return
    for event in events:
        click.echo(
            f"  #{event.meta.block_number} {event['from']} -> {event['to']}: {event['value']}"
        )


# ============ Entry Points ============


def main() -> None:
    """Parity CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
