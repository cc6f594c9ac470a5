"""Cost commands: inspect, reset and estimate per-repository LLM spend."""

import asyncio
from pathlib import Path

import typer

from ..app import app, console, get_json_mode, get_service
from ..utils import Output
from ...core.cost import CostCalculator, TieredPricing, format_cost, select_tier
from ...core.errors import UnknownPricing

cost_app = typer.Typer(
    help="Inspect and manage per-repository LLM cost totals.",
    no_args_is_help=True,
)
app.add_typer(cost_app, name="cost")


def _repository_id(repo: str) -> str:
    """Repositories are tracked by absolute path."""
    return str(Path(repo).expanduser().resolve())


@cost_app.command("show")
def show_command(
    repo: str | None = typer.Argument(
        None,
        help="Repository path (omit to list every tracked repository)",
    ),
):
    """
    Show accumulated cost.

    Example:
        genie cost show
        genie cost show ~/work/my-repo
    """
    out = Output(console=console, json_mode=get_json_mode())
    service = get_service()

    if repo is not None:
        repository_id = _repository_id(repo)
        total = asyncio.run(service.ledger.get_cost(repository_id))
        out.success(
            f"{repository_id}: {format_cost(total)}",
            repository=repository_id,
            cost=total,
        )
        raise typer.Exit(out.finish())

    totals = asyncio.run(service.ledger.list_all())
    if not totals:
        out.warning("No repository costs recorded yet")
        out.set_data("repositories", [])
        raise typer.Exit(out.finish())

    rows = [
        [repository_id, format_cost(total)]
        for repository_id, total in sorted(totals.items(), key=lambda item: -item[1])
    ]
    out.table("Repository Costs", ["Repository", "Cost"], rows, data_key="repositories")
    out.set_data("total", sum(totals.values()))
    out.text(f"[bold]Total:[/bold] {format_cost(sum(totals.values()))}")
    raise typer.Exit(out.finish())


@cost_app.command("reset")
def reset_command(
    repo: str = typer.Argument(..., help="Repository path"),
):
    """
    Reset a repository's accumulated cost to zero.

    Example:
        genie cost reset ~/work/my-repo
    """
    out = Output(console=console, json_mode=get_json_mode())
    service = get_service()
    repository_id = _repository_id(repo)

    asyncio.run(service.ledger.reset_cost(repository_id))
    out.success(f"Reset cost for {repository_id}", repository=repository_id, cost=0.0)
    raise typer.Exit(out.finish())


@cost_app.command("estimate")
def estimate_command(
    model: str = typer.Argument(
        ...,
        help="Model name or pricing key (e.g. gpt-4o, qwen-plus:intl:thinking)",
    ),
    input_tokens: int = typer.Option(0, "--input", "-i", min=0, help="Input tokens"),
    output_tokens: int = typer.Option(0, "--output", "-o", min=0, help="Output tokens"),
    cached_tokens: int = typer.Option(
        0, "--cached", "-c", min=0, help="Input tokens served from cache"
    ),
    region: str | None = typer.Option(
        None, "--region", "-r", help="Pricing region for regional models (intl, china)"
    ),
    thinking: bool = typer.Option(
        False, "--thinking", help="Use thinking-mode pricing where the model has it"
    ),
):
    """
    Estimate the USD cost of a call from its token counts.

    Example:
        genie cost estimate gpt-4o --input 12000 --output 800 --cached 4000
        genie cost estimate qwen-plus --region china --thinking --input 300000
    """
    out = Output(console=console, json_mode=get_json_mode())
    calculator = CostCalculator()

    key = model if calculator.get_pricing(model) else calculator.build_key(model, region, thinking)
    pricing = calculator.get_pricing(key)
    if pricing is None:
        out.provider_error(
            UnknownPricing(f"No pricing for {key!r}"),
            suggestion="Pass a model listed in the pricing table",
        )
        raise typer.Exit(out.finish())

    cost = calculator.compute_cost(key, input_tokens, output_tokens, cached_tokens)
    rates = select_tier(pricing, input_tokens) if isinstance(pricing, TieredPricing) else pricing

    out.table(
        "Rates (USD per 1M tokens)",
        ["Pricing key", "Input", "Output", "Cached"],
        [[key, f"{rates.input:g}", f"{rates.output:g}", f"{rates.cached:g}"]],
        data_key="rates",
    )
    out.success(
        f"Estimated cost: {format_cost(cost)}",
        pricing_key=key,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cached_tokens=min(cached_tokens, input_tokens),
        cost=cost,
    )
    if cached_tokens > input_tokens:
        out.warning(
            f"Cached tokens ({cached_tokens}) exceed input tokens; billed as {input_tokens}"
        )
    raise typer.Exit(out.finish())
