"""Provider commands: list usable models and verify API keys."""

import asyncio

import typer

from ..app import app, console, get_json_mode, get_service
from ..utils import Output
from ...core.errors import ClientNotInitialized, ProviderError


async def _list_models(provider: str, preferred: list[str] | None) -> list[str]:
    service = get_service()
    try:
        return await service.list_available_models(provider, preferred=preferred)
    finally:
        await service.aclose()


async def _validate(provider: str, model: str | None) -> None:
    service = get_service()
    try:
        await service.validate_credential(provider, test_model=model)
    finally:
        await service.aclose()


def _missing_key_hint(provider: str) -> str:
    return f"Set {provider.upper()}_API_KEY in the environment or a .env file"


@app.command("models")
def models_command(
    provider: str = typer.Argument(
        ..., help="Provider name (openai, anthropic, gemini, deepseek, qwen)"
    ),
    preferred: list[str] | None = typer.Option(
        None,
        "--prefer",
        "-p",
        help="Preferred model to check (repeatable; defaults to the provider's list)",
    ),
):
    """
    List the preferred models available to your API key.

    Example:
        genie models openai
        genie models qwen -p qwen-plus -p qwen3-max
    """
    out = Output(console=console, json_mode=get_json_mode())

    try:
        models = asyncio.run(_list_models(provider, preferred or None))
    except ClientNotInitialized as e:
        out.provider_error(e, suggestion=_missing_key_hint(provider))
        raise typer.Exit(out.finish())
    except ProviderError as e:
        out.provider_error(e)
        raise typer.Exit(out.finish())

    out.table(
        f"{provider} models",
        ["Model"],
        [[m] for m in models],
        data_key="models",
    )
    out.set_data("provider", provider)
    raise typer.Exit(out.finish())


@app.command("validate")
def validate_command(
    provider: str = typer.Argument(
        ..., help="Provider name (openai, anthropic, gemini, deepseek, qwen)"
    ),
    model: str | None = typer.Option(
        None, "--model", "-m", help="Model to probe with (defaults to the configured one)"
    ),
):
    """
    Verify a provider API key with a one-token request.

    Example:
        genie validate anthropic
        genie validate gemini --model gemini-2.5-pro
    """
    out = Output(console=console, json_mode=get_json_mode())

    try:
        asyncio.run(_validate(provider, model))
    except ClientNotInitialized as e:
        out.provider_error(e, suggestion=_missing_key_hint(provider))
        raise typer.Exit(out.finish())
    except ProviderError as e:
        out.provider_error(e)
        raise typer.Exit(out.finish())

    out.success(f"{provider} API key is valid", provider=provider, valid=True)
    raise typer.Exit(out.finish())
