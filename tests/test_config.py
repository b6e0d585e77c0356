"""Tests for configuration management."""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from cascadeledger.config import LedgerConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "CASCADELEDGER_MODEL",
        "CASCADELEDGER_API_KEY",
        "ANTHROPIC_API_KEY",
        "CASCADELEDGER_API_BASE",
        "CASCADELEDGER_LOCAL_ONLY",
        "CASCADELEDGER_INSTITUTION",
    ):
        monkeypatch.delenv(name, raising=False)


class TestConfig:
    def test_default_config(self) -> None:
        config = LedgerConfig()
        assert config.base_currency == "USD"
        assert config.categorization.oracle == "rules"
        assert config.categorization.window_size == 30
        assert config.reconciliation.max_iterations == 3
        assert config.reconciliation.min_fix_confidence == 0.95
        assert config.reconciliation.thresholds.critical == Decimal("1000")
        assert config.reconciliation.thresholds.medium == Decimal("0.01")

    def test_load_from_yaml(self, tmp_path: Path) -> None:
        yaml_content = {
            "llm": {"model": "gpt-4o", "temperature": 0.2},
            "categorization": {"oracle": "llm", "institution": "fidelity", "window_size": 50},
            "reconciliation": {"thresholds": {"critical": "100", "high": "20", "medium": "1"}},
            "account_name": "Joint Brokerage",
        }
        config_file = tmp_path / "cascadeledger.yaml"
        config_file.write_text(yaml.dump(yaml_content))

        config = LedgerConfig.load(str(config_file))
        assert config.llm.model == "gpt-4o"
        assert config.llm.temperature == 0.2
        assert config.categorization.institution == "fidelity"
        assert config.categorization.window_size == 50
        assert config.reconciliation.thresholds.high == Decimal("20")
        assert config.account_name == "Joint Brokerage"

    def test_load_with_overrides(self) -> None:
        config = LedgerConfig.load(
            None,
            llm={"model": "ollama/llama3.1"},
            base_currency="EUR",
        )
        assert config.llm.model == "ollama/llama3.1"
        assert config.base_currency == "EUR"

    def test_env_var_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CASCADELEDGER_MODEL", "gpt-4-turbo")
        monkeypatch.setenv("CASCADELEDGER_API_KEY", "test-key-123")
        monkeypatch.setenv("CASCADELEDGER_INSTITUTION", "coinbase")

        config = LedgerConfig.load()
        assert config.llm.model == "gpt-4-turbo"
        assert config.llm.api_key == "test-key-123"
        assert config.categorization.institution == "coinbase"

    def test_local_only_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CASCADELEDGER_LOCAL_ONLY", "true")
        config = LedgerConfig.load()
        assert config.categorization.local_only is True

    def test_missing_config_file(self) -> None:
        config = LedgerConfig.load("/nonexistent/config.yaml")
        # Should use defaults without error
        assert config.llm.model == "claude-sonnet-4-20250514"

    def test_invalid_window_size(self) -> None:
        with pytest.raises(ValueError):
            LedgerConfig.load(None, categorization={"window_size": 0})
