#!/usr/bin/env python3
"""
Operator DAO CLI

Command-line interface for driving a DAO deployment whose state lives in a
local SQLite store. Every state-changing command loads the stored state,
runs one call, then saves the new state and a receipt.

Usage:
    opdao init [--sender ADDRESS] [--bootstrap REF]
    opdao fund <sender> <amount>
    opdao propose <sender> <description> <action_ref>
    opdao signal <sender> <proposal_id> [--reject] [--action-ref REF]
    opdao is-operator <address>
    opdao proposal <proposal_id> [--json]
    opdao status [--json]
    opdao receipts [--limit N] [--sender ADDRESS]
"""

import asyncio
import json
import sys
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

try:
    import click
except ImportError:
    print("Error: click is required. Install with: pip install click")
    sys.exit(1)

from opdao import __version__
from opdao.config import DAOConfig, load_config
from opdao.constants import ERROR_NAMES
from opdao.dao import OperatorDAO, TxResult
from opdao.exceptions import DAOError, ConfigurationError
from opdao.logger import set_log_level
from opdao.storage import StateStoreSQLite


def format_address(address: str, short: bool = False) -> str:
    """Format address for display."""
    if short:
        return f"{address[:10]}...{address[-8:]}"
    return address


def format_error(result: TxResult) -> str:
    if result.error_code is None:
        return result.error
    name = ERROR_NAMES.get(result.error_code, "unknown")
    return f"err u{result.error_code} ({name}): {result.error}"


# ── Store helpers ─────────────────────────────────────────────────────

async def _open_dao(config: DAOConfig, db_path: str) -> Tuple[StateStoreSQLite, OperatorDAO]:
    store = await StateStoreSQLite.create(db_path)
    dao = OperatorDAO(config)
    saved = await store.load_state()
    if saved is not None:
        try:
            dao.load_state(saved)
        except ValueError as e:
            await store.close()
            raise click.ClickException(f"Stored state is unusable: {e}")
    return store, dao


async def _transact(config: DAOConfig, db_path: str, method: str, sender: str, args: List[Any]) -> TxResult:
    store, dao = await _open_dao(config, db_path)
    try:
        result = dao.call(method, sender, *args)
        if result.success:
            await store.save_state(dao.export_state())
        await store.add_receipt(
            block_height=dao.block_height,
            method=method,
            sender=sender,
            args=args,
            success=result.success,
            result=result.value,
            error_code=result.error_code,
            error=result.error,
        )
        return result
    finally:
        await store.close()


async def _snapshot(config: DAOConfig, db_path: str) -> OperatorDAO:
    store, dao = await _open_dao(config, db_path)
    await store.close()
    return dao


def transact(ctx: click.Context, method: str, sender: str, *args: Any) -> TxResult:
    """Run one state-changing call; ClickException on err."""
    result = asyncio.run(_transact(ctx.obj["config"], ctx.obj["db_path"], method, sender, list(args)))
    if not result.success:
        raise click.ClickException(format_error(result))
    return result


def snapshot(ctx: click.Context) -> OperatorDAO:
    return asyncio.run(_snapshot(ctx.obj["config"], ctx.obj["db_path"]))


def proposal_summary(dao: OperatorDAO, proposal_id: int) -> Dict[str, Any]:
    try:
        return dao.get_proposal(proposal_id).to_dict()
    except DAOError as e:
        raise click.ClickException(f"err u{e.code} ({e.error_name}): {e}")


# ── Commands ──────────────────────────────────────────────────────────

@click.group()
@click.version_option(version=__version__, prog_name="opdao")
@click.option(
    "--config", "-c",
    "config_path",
    type=click.Path(),
    default=None,
    help="Path to config.toml (default: $OPDAO_CONFIG or ./config.toml)"
)
@click.option(
    "--db",
    "db_path",
    type=click.Path(),
    default=None,
    help="State database (default: [storage] path)"
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], db_path: Optional[str]):
    """Operator DAO Command Line Interface

    Threshold governance for a small set of operators.
    """
    try:
        config = load_config(config_path)
        config.validate()
    except ConfigurationError as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    set_log_level(config.logging.level)
    ctx.obj = {"config": config, "db_path": db_path or config.storage.path}


@cli.command("init")
@click.option("--sender", "-s", default=None, help="Deployer address (default: [dao] deployer)")
@click.option("--bootstrap", "-b", "bootstrap_ref", default=None, help="Bootstrap action reference")
@click.pass_context
def init_cmd(ctx: click.Context, sender: Optional[str], bootstrap_ref: Optional[str]):
    """Run the one-time bootstrap.

    Examples:

        opdao init

        opdao init --bootstrap dp000-bootstrap
    """
    config: DAOConfig = ctx.obj["config"]
    sender = sender or config.dao.deployer
    transact(ctx, "construct", sender, bootstrap_ref or config.bootstrap.ref)

    click.echo(click.style("✓ DAO constructed", fg="green"))
    click.echo(f"Operators:  {', '.join(config.bootstrap.operators)}")
    click.echo(f"Extensions: {', '.join(config.bootstrap.extensions) or '-'}")


@cli.command("fund")
@click.argument("sender")
@click.argument("amount")
@click.pass_context
def fund_cmd(ctx: click.Context, sender: str, amount: str):
    """Deposit AMOUNT from SENDER into the treasury."""
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise click.ClickException(f"Invalid amount: {amount}")

    result = transact(ctx, "deposit", sender, value)
    click.echo(click.style(f"✓ Deposited {value}", fg="green"))
    click.echo(f"Treasury balance: {result.value}")


@cli.command("propose")
@click.argument("sender")
@click.argument("description")
@click.argument("action_ref")
@click.pass_context
def propose_cmd(ctx: click.Context, sender: str, description: str, action_ref: str):
    """Create a proposal to apply ACTION_REF.

    Examples:

        opdao propose ST1PQ... "Add a fourth operator" dp001-add-operator
    """
    result = transact(ctx, "create-proposal", sender, description, action_ref)
    click.echo(click.style(f"✓ Proposal #{result.value} created", fg="green"))


@cli.command("signal")
@click.argument("sender")
@click.argument("proposal_id", type=int)
@click.option("--reject", is_flag=True, help="Vote against the proposal")
@click.option("--action-ref", default=None, help="Expected action reference of the proposal")
@click.pass_context
def signal_cmd(ctx: click.Context, sender: str, proposal_id: int, reject: bool, action_ref: Optional[str]):
    """Cast SENDER's vote on PROPOSAL_ID."""
    args: List[Any] = [proposal_id, not reject]
    if action_ref:
        args.append(action_ref)
    result = transact(ctx, "signal", sender, *args)

    vote = "reject" if reject else "approve"
    click.echo(click.style(f"✓ {format_address(sender, short=True)} voted {vote} on #{proposal_id}", fg="green"))
    if result.value:
        click.echo(click.style(f"Proposal #{proposal_id} executed", fg="cyan", bold=True))


@cli.command("is-operator")
@click.argument("address")
@click.pass_context
def is_operator_cmd(ctx: click.Context, address: str):
    """Print whether ADDRESS is an operator."""
    dao = snapshot(ctx)
    click.echo("true" if dao.is_operator(address) else "false")


@cli.command("proposal")
@click.argument("proposal_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output raw JSON")
@click.pass_context
def proposal_cmd(ctx: click.Context, proposal_id: int, as_json: bool):
    """Show a proposal and its votes."""
    dao = snapshot(ctx)
    data = proposal_summary(dao, proposal_id)

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(click.style(f"Proposal #{data['id']}", fg="cyan", bold=True))
    click.echo(f"Description: {data['description']}")
    click.echo(f"Action:      {data['actionRef']}")
    click.echo(f"Proposer:    {data['proposer']}")
    click.echo(f"Status:      {data['status']}")
    click.echo(
        f"Votes:       {data['approveCount']} approve / {data['rejectCount']} reject "
        f"(needs {ctx.obj['config'].dao.signals_required})"
    )
    for vote in data["votes"]:
        mark = click.style("approve", fg="green") if vote["approve"] else click.style("reject", fg="red")
        click.echo(f"  {vote['voter']}: {mark}")


@cli.command("status")
@click.option("--json", "as_json", is_flag=True, help="Output raw JSON")
@click.pass_context
def status_cmd(ctx: click.Context, as_json: bool):
    """Show DAO status."""
    dao = snapshot(ctx)
    data = {
        "dao": dao.address,
        "governance": dao.voting.address,
        "constructed": dao.state.constructed,
        "blockHeight": dao.block_height,
        "signalsRequired": dao.state.threshold.signals_required,
        "operators": dao.operators(),
        "extensions": dao.core.registered_extensions(),
        "proposals": dao.proposal_count(),
        "pending": [p.id for p in dao.voting.pending_proposals()],
        "treasury": str(dao.treasury_balance()),
        "stateRoot": dao.compute_state_root(),
    }

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo()
    click.echo(click.style("═══════════════════════════════════════", fg="cyan"))
    click.echo(click.style("            Operator DAO Status         ", fg="cyan", bold=True))
    click.echo(click.style("═══════════════════════════════════════", fg="cyan"))
    click.echo()
    click.echo(f"DAO:          {data['dao']}")
    click.echo(f"Governance:   {data['governance']}")
    click.echo(f"Constructed:  {data['constructed']}")
    click.echo(f"Block height: {data['blockHeight']}")
    click.echo(f"Threshold:    {data['signalsRequired']} signals")
    click.echo(f"Treasury:     {data['treasury']}")
    click.echo(f"Proposals:    {data['proposals']} ({len(data['pending'])} pending)")
    click.echo(f"State root:   {data['stateRoot'][:16]}...")
    click.echo()
    click.echo(click.style("Operators:", fg="green"))
    for operator in data["operators"]:
        click.echo(f"  {operator}")
    if data["extensions"]:
        click.echo(click.style("Extensions:", fg="blue"))
        for ref in data["extensions"]:
            click.echo(f"  {ref}")


@cli.command("receipts")
@click.option("--limit", "-n", default=20, show_default=True, help="Number of receipts")
@click.option("--sender", default=None, help="Only receipts sent by this address")
@click.pass_context
def receipts_cmd(ctx: click.Context, limit: int, sender: Optional[str]):
    """List recent call receipts."""

    async def fetch():
        store = await StateStoreSQLite.create(ctx.obj["db_path"])
        try:
            return await store.get_receipts(limit=limit, sender=sender)
        finally:
            await store.close()

    receipts = asyncio.run(fetch())
    if not receipts:
        click.echo("No receipts")
        return

    for receipt in receipts:
        if receipt["success"]:
            outcome = click.style(f"ok {receipt['result']}", fg="green")
        else:
            outcome = click.style(f"err u{receipt['error_code']}", fg="red")
        click.echo(
            f"#{receipt['id']:<4} h={receipt['block_height']:<4} {receipt['method']:<16} "
            f"{format_address(receipt['sender'], short=True)}  {outcome}"
        )


if __name__ == "__main__":
    cli()
