"""CLI smoke tests using typer's CliRunner."""

import asyncio
import importlib
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from typer.testing import CliRunner

from genie import __version__
from genie.cli.app import app
from genie.config import CostConfig, GenieConfig, configure, reset_config
from genie.core.cost import CostLedger
from genie.core.errors import InvalidCredential
from genie.storage import SQLiteStore

app_module = importlib.import_module("genie.cli.app")

runner = CliRunner()


@pytest.fixture
def state_db(tmp_path):
    """Point the global config at a throwaway state database."""
    path = tmp_path / "state.db"
    configure(GenieConfig(cost=CostConfig(state_db=str(path))))
    yield path
    reset_config()


@pytest.fixture
def no_api_keys(monkeypatch):
    monkeypatch.setattr("genie.config._dotenv_loaded", True)
    for var in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"):
        monkeypatch.delenv(var, raising=False)


def _record(path, repository_id: str, amount: float) -> None:
    asyncio.run(CostLedger(SQLiteStore(path)).add_cost(amount, repository_id))


def _json(result) -> dict:
    return json.loads(result.output)


class TestVersion:
    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.strip() == f"genie {__version__}"

    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "cost" in result.output
        assert "validate" in result.output


class TestCostShow:
    def test_empty_ledger(self, state_db):
        result = runner.invoke(app, ["--json", "cost", "show"])
        assert result.exit_code == 0
        data = _json(result)
        assert data["repositories"] == []
        assert data["warnings"][0]["message"] == "No repository costs recorded yet"

    def test_lists_repositories_by_cost(self, state_db):
        _record(state_db, "/work/small", 0.25)
        _record(state_db, "/work/big", 1.5)

        result = runner.invoke(app, ["--json", "cost", "show"])

        assert result.exit_code == 0
        data = _json(result)
        assert [row["Repository"] for row in data["repositories"]] == ["/work/big", "/work/small"]
        assert data["repositories"][0]["Cost"] == "$1.500000"
        assert data["total"] == pytest.approx(1.75)

    def test_human_output_has_table_and_total(self, state_db):
        _record(state_db, "/w/a", 0.5)
        result = runner.invoke(app, ["cost", "show"])
        assert result.exit_code == 0
        assert "Repository Costs" in result.output
        assert "Total: $0.500000" in result.output

    def test_single_repository_resolves_path(self, state_db, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        _record(state_db, str(repo.resolve()), 0.75)

        result = runner.invoke(app, ["--json", "cost", "show", str(repo)])

        assert result.exit_code == 0
        data = _json(result)
        assert data["repository"] == str(repo.resolve())
        assert data["cost"] == pytest.approx(0.75)

    def test_untracked_repository_is_zero(self, state_db, tmp_path):
        result = runner.invoke(app, ["--json", "cost", "show", str(tmp_path / "nowhere")])
        assert result.exit_code == 0
        assert _json(result)["cost"] == 0.0


class TestCostReset:
    def test_reset_zeroes_total(self, state_db, tmp_path):
        repo = str((tmp_path / "repo").resolve())
        _record(state_db, repo, 2.0)

        result = runner.invoke(app, ["--json", "cost", "reset", repo])

        assert result.exit_code == 0
        assert _json(result)["cost"] == 0.0
        assert asyncio.run(CostLedger(SQLiteStore(state_db)).get_cost(repo)) == 0.0

    def test_reset_requires_repository(self, state_db):
        result = runner.invoke(app, ["cost", "reset"])
        assert result.exit_code != 0


class TestCostEstimate:
    def test_flat_model(self):
        result = runner.invoke(
            app, ["--json", "cost", "estimate", "gpt-4o", "-i", "1000000", "-o", "100000"]
        )
        assert result.exit_code == 0
        data = _json(result)
        assert data["pricing_key"] == "gpt-4o"
        assert data["cost"] == pytest.approx(2.5 + 1.0)
        assert data["rates"][0]["Input"] == "2.5"

    def test_regional_thinking_key(self):
        result = runner.invoke(
            app,
            [
                "--json", "cost", "estimate", "qwen-plus",
                "--region", "intl", "--thinking", "-i", "1000000", "-o", "1000000",
            ],
        )
        assert result.exit_code == 0
        data = _json(result)
        assert data["pricing_key"] == "qwen-plus:intl:thinking"
        # 1M input is within the second tier (bound inclusive)
        assert data["cost"] == pytest.approx(1.2 + 12.0)

    def test_cached_tokens_clamped_with_warning(self):
        result = runner.invoke(
            app, ["--json", "cost", "estimate", "gpt-4o", "-i", "100", "-c", "500"]
        )
        assert result.exit_code == 0
        data = _json(result)
        assert data["cached_tokens"] == 100
        assert "exceed input tokens" in data["warnings"][0]["message"]

    def test_unknown_model(self):
        result = runner.invoke(app, ["--json", "cost", "estimate", "llama-9000", "-i", "10"])
        assert result.exit_code == 4
        data = _json(result)
        assert data["status"] == "error"
        assert data["errors"][0]["type"] == "UnknownPricing"

    def test_negative_tokens_rejected(self):
        result = runner.invoke(app, ["cost", "estimate", "gpt-4o", "-i", "-5"])
        assert result.exit_code == 2


class TestProviderCommands:
    def test_validate_without_key(self, state_db, no_api_keys):
        result = runner.invoke(app, ["--json", "validate", "openai"])
        assert result.exit_code == 2
        error = _json(result)["errors"][0]
        assert error["type"] == "ClientNotInitialized"
        assert "OPENAI_API_KEY" in error["suggestion"]

    def test_validate_unknown_provider(self, state_db):
        result = runner.invoke(app, ["--json", "validate", "mistral"])
        assert result.exit_code == 4
        assert _json(result)["errors"][0]["type"] == "UnsupportedProvider"

    def test_validate_rejected_key(self, monkeypatch):
        service = MagicMock()
        service.validate_credential = AsyncMock(side_effect=InvalidCredential("401 Unauthorized", provider="Claude"))
        service.aclose = AsyncMock()
        monkeypatch.setattr("genie.cli.commands.models.get_service", lambda: service)

        result = runner.invoke(app, ["--json", "validate", "anthropic"])

        assert result.exit_code == 3
        service.aclose.assert_awaited_once()

    def test_validate_success(self, monkeypatch):
        service = MagicMock()
        service.validate_credential = AsyncMock()
        service.aclose = AsyncMock()
        monkeypatch.setattr("genie.cli.commands.models.get_service", lambda: service)

        result = runner.invoke(app, ["--json", "validate", "gemini", "-m", "gemini-2.5-pro"])

        assert result.exit_code == 0
        assert _json(result)["valid"] is True
        service.validate_credential.assert_awaited_once_with("gemini", test_model="gemini-2.5-pro")

    def test_models_lists_available(self, monkeypatch):
        service = MagicMock()
        service.list_available_models = AsyncMock(return_value=["gpt-5", "gpt-4o"])
        service.aclose = AsyncMock()
        monkeypatch.setattr("genie.cli.commands.models.get_service", lambda: service)

        result = runner.invoke(app, ["--json", "models", "openai", "-p", "gpt-5", "-p", "gpt-4o"])

        assert result.exit_code == 0
        data = _json(result)
        assert data["models"] == [{"Model": "gpt-5"}, {"Model": "gpt-4o"}]
        assert data["provider"] == "openai"
        service.list_available_models.assert_awaited_once_with(
            "openai", preferred=["gpt-5", "gpt-4o"]
        )


def test_get_service_uses_global_config(state_db):
    service = app_module.get_service()
    assert str(service.store.path) == str(state_db)
