"""CLI for the web3 portfolio engine."""

import logging
from decimal import Decimal
from enum import StrEnum
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.traceback import install

from portfolio_engine.alerts import AlertEngine, AlertRule, LoggingSink, SnapshotBuilder, validate
from portfolio_engine.config import build_oracle, build_registry, get_settings
from portfolio_engine.core.aggregator import PortfolioAggregator
from portfolio_engine.core.errors import PortfolioEngineError
from portfolio_engine.core.fetcher import BalanceFetcher, normalize_address
from portfolio_engine.core.models import AddressRecord, Portfolio, PortfolioAllocation, PortfolioSummary
from portfolio_engine.core.valuation import scale, to_display
from portfolio_engine.data import get_all_supported_networks, get_chain_id

install(show_locals=False)

app = typer.Typer(
    name="portfolio-engine",
    help="Aggregate balances across EVM networks and evaluate alert rules",
    add_completion=False,
)

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger("portfolio_engine")


class OutputFormat(StrEnum):
    """Output format options."""

    TABLE = "table"
    JSON = "json"


@app.callback()
def main(
    log_level: str | None = typer.Option(None, "--log-level", "-l", help="Log level (defaults to LOG_LEVEL)"),
) -> None:
    """Configure logging for every command."""
    level = (log_level or get_settings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.command()
def networks() -> None:
    """Show supported networks, their liveness and gas price."""
    settings = get_settings()
    with build_registry(settings) as registry:
        table = Table(title="Networks", show_header=True, header_style="bold magenta")
        table.add_column("Network", style="cyan")
        table.add_column("Chain ID", justify="right")
        table.add_column("Status", style="green")
        table.add_column("Block", justify="right")
        table.add_column("Gas (gwei)", justify="right")

        connected = set(registry.networks())
        for network in get_all_supported_networks():
            if network not in connected:
                table.add_row(network, str(get_chain_id(network)), "[dim]not configured[/dim]", "-", "-")
                continue

            handle = registry.probe(network)
            gas = "-"
            if handle.live:
                try:
                    gas = f"{to_display(scale(registry.gas_price(network), 9)):,.2f}"
                except PortfolioEngineError as e:
                    logger.warning("Gas price unavailable for %s: %s", network, e)
            table.add_row(
                network,
                str(get_chain_id(network)),
                "✓ live" if handle.live else "[red]✗ down[/red]",
                str(handle.block_height) if handle.block_height is not None else "-",
                gas,
            )

    console.print(table)


@app.command()
def balances(
    address: str = typer.Argument(..., help="Wallet address to query"),
    network: list[str] = typer.Option(None, "--network", "-n", help="Network(s) to query, default all connected"),
) -> None:
    """
    Show native and known-token balances of an address.

    Examples:

        portfolio-engine balances 0xABC...

        portfolio-engine balances 0xABC... --network ethereum --network polygon
    """
    try:
        checksummed = normalize_address(address)
    except PortfolioEngineError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1) from None

    settings = get_settings()
    with build_registry(settings) as registry:
        fetcher = BalanceFetcher(registry)
        targets = network or registry.networks()
        if not targets:
            console.print("[yellow]No networks connected[/yellow]")
            raise typer.Exit(1)

        table = Table(
            title=f"Balances for {checksummed[:10]}...{checksummed[-8:]}",
            show_header=True,
            header_style="bold magenta",
        )
        table.add_column("Network", style="blue")
        table.add_column("Token", style="green")
        table.add_column("Balance", style="white", justify="right")

        for name in targets:
            try:
                native = fetcher.native_balance(checksummed, name)
                native_token = fetcher.tokens.native_token(name)
                table.add_row(name, native_token.symbol, f"{to_display(scale(native, native_token.decimals)):,.8f}")
                for raw in fetcher.token_balances(checksummed, name):
                    table.add_row(name, raw.token.symbol, f"{to_display(scale(raw.amount, raw.token.decimals)):,.8f}")
            except PortfolioEngineError as e:
                table.add_row(name, "[red]error[/red]", str(e))

    console.print(table)


@app.command()
def portfolio(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Portfolio YAML file"),
    format: OutputFormat = typer.Option(OutputFormat.TABLE, "--format", "-f", help="Output format"),
    top: int = typer.Option(5, "--top", help="Number of top assets to show"),
) -> None:
    """
    Refresh a portfolio described in a YAML file and show its summary.

    The file lists addresses:

        name: Main
        addresses:
          - address: "0x..."
            network: ethereum
            label: cold wallet
    """
    try:
        target = load_portfolio(file)
    except (PortfolioEngineError, ValueError, KeyError) as e:
        console.print(f"[bold red]Invalid portfolio file:[/bold red] {e}")
        raise typer.Exit(1) from None

    settings = get_settings()
    oracle = build_oracle(settings)
    with build_registry(settings) as registry:
        aggregator = PortfolioAggregator(
            fetcher=BalanceFetcher(registry),
            oracle=oracle,
            max_workers=settings.max_workers(),
            timeouts=settings.timeouts(),
            default_max_workers=settings.default_max_workers,
            default_timeout=settings.default_timeout,
        )
        with Progress(
            SpinnerColumn(), TextColumn("[progress.description]{task.description}"), console=err_console
        ) as progress:
            task = progress.add_task(f"Refreshing {len(target.addresses)} address(es)...", total=None)
            result = aggregator.refresh_balances(target)
            progress.update(task, description=f"✓ {len(result.balances)} balance(s)")

    summary = aggregator.summarize(result.balances, top_n=top, portfolio_id=target.id)
    allocation = aggregator.allocate(result.balances)

    if format == OutputFormat.JSON:
        console.print_json(
            data={
                "summary": summary.model_dump(mode="json"),
                "allocation": allocation.model_dump(mode="json"),
                "failures": [failure.model_dump(mode="json") for failure in result.failures],
            }
        )
        return

    _output_summary(target.name, summary, allocation)
    for failure in result.failures:
        console.print(f"[red]✗[/red] {failure.address} on {failure.network}: {failure.error_type}: {failure.message}")


@app.command()
def alerts(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Alert rules YAML file"),
) -> None:
    """
    Validate alert rules from a YAML file and evaluate them once.

    The file lists rules:

        alerts:
          - name: ETH above 500
            kind: price
            conditions: {token: ETH, operator: ">", value: 500}
    """
    with open(file, encoding="utf-8") as f:
        document = yaml.safe_load(f) or {}

    owner_id = str(document.get("owner_id", "cli"))
    rules = []
    for entry in document.get("alerts") or []:
        name = entry.get("name", "unnamed")
        try:
            conditions = validate(entry.get("kind"), entry.get("conditions") or {})
        except PortfolioEngineError as e:
            console.print(f"[red]✗[/red] {name}: {e}")
            continue
        rules.append(
            AlertRule(
                owner_id=owner_id,
                kind=conditions.kind,
                name=name,
                conditions=conditions,
                active=entry.get("active", True),
            )
        )

    settings = get_settings()
    with build_registry(settings) as registry:
        builder = SnapshotBuilder(BalanceFetcher(registry), build_oracle(settings))
        snapshot = builder.build(rules, transactions=document.get("transactions"))

    engine = AlertEngine(sink=LoggingSink(), policy=settings.notification_policy)
    results = engine.run_cycle(rules, snapshot)

    table = Table(title="Alerts", show_header=True, header_style="bold magenta")
    table.add_column("Rule", style="cyan")
    table.add_column("Kind", style="blue")
    table.add_column("Observed", justify="right")
    table.add_column("Condition")
    table.add_column("Result")

    names = {rule.id: rule.name for rule in rules}
    for result in results:
        condition = f"{result.operator} {result.target}" if result.operator else "new transactions"
        if result.error:
            outcome = f"[yellow]{result.error}[/yellow]"
        elif result.triggered:
            outcome = "[bold green]TRIGGERED[/bold green]"
        else:
            outcome = "[dim]not met[/dim]"
        table.add_row(names[result.rule_id], result.kind, _fmt(result.observed), condition, outcome)

    console.print(table)


def load_portfolio(path: Path) -> Portfolio:
    """
    Read a portfolio from a YAML file.

    Raises
    ------
    InvalidAddress
        If an address is malformed
    KeyError
        If an entry lacks `address` or `network`

    """
    with open(path, encoding="utf-8") as f:
        document: dict[str, Any] = yaml.safe_load(f) or {}

    target = Portfolio(owner_id=str(document.get("owner_id", "cli")), name=document.get("name", path.stem))
    records = [
        AddressRecord(
            portfolio_id=target.id,
            address=normalize_address(str(entry["address"])),
            network=entry["network"],
            label=entry.get("label", ""),
        )
        for entry in document.get("addresses") or []
    ]
    return target.model_copy(update={"addresses": records})


def _fmt(value: Decimal | None) -> str:
    return "-" if value is None else f"{to_display(value):,.8f}"


def _output_summary(name: str, summary: PortfolioSummary, allocation: PortfolioAllocation) -> None:
    """Output a portfolio summary as rich tables."""
    if not summary.asset_count:
        console.print("\n[yellow]No balances found[/yellow]")
        return

    table = Table(title=f"Top assets: {name}", show_header=True, header_style="bold magenta")
    table.add_column("Token", style="green")
    table.add_column("Network", style="blue")
    table.add_column("Amount", style="white", justify="right")
    table.add_column("USD Value", style="bold green", justify="right")

    for asset in summary.top_assets:
        usd = f"${to_display(asset.value):,.2f}" if asset.value is not None else "-"
        table.add_row(asset.symbol, asset.network, _fmt(asset.amount), usd)

    console.print("\n")
    console.print(table)

    summary_table = Table(show_header=False, box=None)
    summary_table.add_column("Label", style="bold")
    summary_table.add_column("Value", style="bold green")

    summary_table.add_row("Total Value:", f"${to_display(summary.total_value):,.2f}")
    summary_table.add_row("Assets:", f"{summary.asset_count} ({summary.priced_asset_count} priced)")
    summary_table.add_row("Networks:", str(summary.network_count))

    if allocation.by_network:
        summary_table.add_row("", "")
        summary_table.add_row("[bold]By Network:[/bold]", "")
        for network, share in allocation.by_network.items():
            summary_table.add_row(f"  {network}", f"${to_display(share.value):,.2f} ({share.percentage:.2f}%)")

    if allocation.by_asset:
        summary_table.add_row("", "")
        summary_table.add_row("[bold]By Asset:[/bold]", "")
        for symbol, share in allocation.by_asset.items():
            summary_table.add_row(f"  {symbol}", f"${to_display(share.value):,.2f} ({share.percentage:.2f}%)")

    console.print("\n")
    console.print(summary_table)
    console.print("\n")


if __name__ == "__main__":
    app()
