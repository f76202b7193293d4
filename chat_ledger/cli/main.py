"""
CLI interface for chat-ledger.

Streams chat replies to the terminal and manages the persisted usage stats.
"""

import logging
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from chat_ledger.config.loader import ChatConfig, load_chat_config
from chat_ledger.core.accumulator import ChatMessage
from chat_ledger.core.formatting import format_cost, format_duration, format_tokens
from chat_ledger.core.ledger import UsageLedger
from chat_ledger.core.pricing import PRICING_TABLE, PricingTable, estimate_breakdown_cost, estimate_cost
from chat_ledger.sdk.chat_client import ChatStreamClient
from chat_ledger.sdk.session import ChatSession
from chat_ledger.storage.repository import (
    ConversationRepository,
    SelectedModelRepository,
    SqliteKeyValueStore,
    UsageStatsRepository,
)

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DEFAULT_CONVERSATION_ID = "default"


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _load_config(ctx: typer.Context) -> ChatConfig:
    return ctx.obj["config"] if ctx.obj else ChatConfig.default()


def _pricing_table(config: ChatConfig) -> PricingTable:
    return PRICING_TABLE.with_overrides(config.pricing) if config.pricing else PRICING_TABLE


def _build_ledger(config: ChatConfig, store: SqliteKeyValueStore) -> UsageLedger:
    return UsageLedger(
        UsageStatsRepository(store),
        prefer_authoritative_usage=config.usage.prefer_authoritative_usage,
        count_user_tokens=config.usage.count_user_tokens,
        pricing=_pricing_table(config),
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        help="Path to a YAML configuration file"
    ),
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)"
    ),
):
    """chat-ledger CLI."""
    _configure_logging(log_level)
    try:
        config = load_chat_config(config_path) if config_path else ChatConfig.default()
    except Exception as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    ctx.obj = {"config": config}

    if ctx.invoked_subcommand is None:
        console.print("chat-ledger - Use --help to see available commands")


@app.command()
def chat(
    ctx: typer.Context,
    message: str = typer.Argument(..., help="Message to send"),
    model: Optional[str] = typer.Option(
        None,
        "--model",
        "-m",
        help="Model to use; remembered for later calls"
    ),
    conversation_id: str = typer.Option(
        DEFAULT_CONVERSATION_ID,
        "--conversation",
        "-c",
        help="Conversation to continue"
    ),
    new: bool = typer.Option(
        False,
        "--new",
        help="Clear the conversation before sending"
    ),
):
    """Send a message and stream the reply."""
    config = _load_config(ctx)
    store = SqliteKeyValueStore(config.db_path)
    selected = SelectedModelRepository(store, config.model)
    if model:
        selected.save(model)
    active_model = selected.load()

    failures = []
    printed = 0

    def _on_update(partial: ChatMessage) -> None:
        nonlocal printed
        console.print(partial.content[printed:], end="", markup=False, highlight=False)
        printed = len(partial.content)

    client = ChatStreamClient(config.endpoint)
    try:
        session = ChatSession(
            client,
            _build_ledger(config, store),
            active_model,
            request=config.request,
            on_stream_error=failures.append,
            conversations=ConversationRepository(store),
            conversation_id=conversation_id,
        )
        if new:
            session.clear()

        reply = session.send(message, on_update=_on_update)
    finally:
        client.close()

    console.print()
    if failures:
        console.print(f"[red]Error:[/] {str(failures[0])}")
        console.print("Sorry, I encountered an error. Please try again.")
        sys.exit(EXIT_CODE_FAIL)
    if reply is None:
        console.print("[yellow]No reply received[/]")
        sys.exit(EXIT_CODE_FAIL)

    _display_metadata(reply, _pricing_table(config))
    if session.last_skipped_records:
        console.print(f"[yellow]Skipped {session.last_skipped_records} malformed stream records[/]")
    if session.last_usage is not None:
        usage = session.last_usage
        source = "reported" if usage.authoritative else "estimated"
        console.print(
            f"[dim]{format_tokens(usage.input_tokens + usage.output_tokens)} tokens "
            f"({source}) · {format_cost(usage.cost, 6)}[/]"
        )
    sys.exit(EXIT_CODE_PASS)


def _display_metadata(message: ChatMessage, table: PricingTable) -> None:
    """Show executed tools and the per-model usage breakdown."""
    metadata = message.metadata
    if metadata is None:
        return

    if metadata.executed_tools:
        console.print("[bold]Tools:[/] " + ", ".join(metadata.executed_tools))

    if not metadata.usage_breakdown:
        return

    breakdown = Table(title="Model Usage")
    breakdown.add_column("Model")
    breakdown.add_column("Prompt", justify="right")
    breakdown.add_column("Completion", justify="right")
    breakdown.add_column("Time", justify="right")
    breakdown.add_column("Cost", justify="right")
    for usage in metadata.usage_breakdown:
        breakdown.add_row(
            usage.model,
            format_tokens(usage.prompt_tokens),
            format_tokens(usage.completion_tokens),
            format_duration(usage.total_time) if usage.total_time is not None else "-",
            format_cost(estimate_cost(usage.model, usage.prompt_tokens, usage.completion_tokens, table), 6),
        )
    console.print(breakdown)
    console.print(f"Total: {format_cost(estimate_breakdown_cost(metadata.usage_breakdown, table), 6)}")


@app.command()
def stats(ctx: typer.Context):
    """Show usage statistics."""
    config = _load_config(ctx)
    ledger = _build_ledger(config, SqliteKeyValueStore(config.db_path))
    usage = ledger.stats

    if usage.total_messages == 0:
        console.print("[dim]No usage recorded yet.[/]")
        sys.exit(EXIT_CODE_PASS)

    summary = ledger.summary()
    table = Table(title="Chat Usage")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Messages", summary["messages"])
    table.add_row("Tokens", summary["tokens"])
    table.add_row("Input tokens", format_tokens(usage.input_tokens))
    table.add_row("Output tokens", format_tokens(usage.output_tokens))
    table.add_row("Estimated cost", summary["cost"])
    table.add_row("Last updated", usage.last_updated)
    console.print(table)

    if usage.models_used:
        models = Table(title="Models")
        models.add_column("Model")
        models.add_column("Messages", justify="right")
        models.add_column("Share", justify="right")
        for name, count in sorted(usage.models_used.items(), key=lambda item: -item[1]):
            share = count / usage.ai_messages * 100 if usage.ai_messages else 0
            models.add_row(name, str(count), f"{share:.0f}%")
        console.print(models)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Skip the confirmation prompt"
    ),
):
    """Reset all usage statistics."""
    if not yes and not typer.confirm(
            "Are you sure you want to reset all usage statistics? This cannot be undone."):
        console.print("Reset cancelled")
        sys.exit(EXIT_CODE_PASS)

    config = _load_config(ctx)
    _build_ledger(config, SqliteKeyValueStore(config.db_path)).reset()
    console.print("[green]✓[/] Usage statistics reset")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def conversations(
    ctx: typer.Context,
    delete: Optional[str] = typer.Option(
        None,
        "--delete",
        "-d",
        help="Delete the cached conversation with this id"
    ),
):
    """List or delete cached conversations."""
    config = _load_config(ctx)
    repository = ConversationRepository(SqliteKeyValueStore(config.db_path))
    ids = repository.list_ids()

    if delete is not None:
        if delete not in ids:
            console.print(f"[red]Error:[/] No conversation named {delete}")
            sys.exit(EXIT_CODE_FAIL)
        repository.delete(delete)
        console.print(f"[green]✓[/] Deleted conversation {delete}")
        sys.exit(EXIT_CODE_PASS)

    if not ids:
        console.print("[dim]No cached conversations.[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Conversations")
    table.add_column("Id")
    table.add_column("Messages", justify="right")
    for conversation_id in sorted(ids):
        table.add_row(conversation_id, str(len(repository.load(conversation_id))))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def cost(
    ctx: typer.Context,
    model: str = typer.Argument(..., help="Model identifier"),
    prompt_tokens: int = typer.Argument(..., help="Prompt token count"),
    completion_tokens: int = typer.Argument(..., help="Completion token count"),
):
    """Estimate the cost of a completion."""
    table = _pricing_table(_load_config(ctx))
    try:
        amount = estimate_cost(model, prompt_tokens, completion_tokens, table)
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if model not in table:
        console.print(f"[yellow]Unknown model {model}, no price on record[/]")
    console.print(f"{model}: {format_cost(amount, 6)}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def models(ctx: typer.Context):
    """List model prices (USD per 1M tokens)."""
    pricing = _pricing_table(_load_config(ctx))
    table = Table(title="Model Pricing (per 1M tokens)")
    table.add_column("Model")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    for name, price in sorted(pricing.prices.items()):
        table.add_row(name, f"${price.input_per_million:.2f}", f"${price.output_per_million:.2f}")
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
