"""
cascadeledger configuration management.

Supports loading from YAML files, environment variables, and keyword overrides.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from cascadeledger.analyzers.reconciliation import SeverityThresholds


class LLMConfig(BaseModel):
    """LLM provider configuration (powered by litellm)."""

    model: str = Field(default="claude-sonnet-4-20250514", description="Model identifier (litellm format)")
    api_key: str | None = Field(default=None, description="API key (or set env var)")
    api_base: str | None = Field(default=None, description="Custom API base URL")
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    max_tokens: int = Field(default=8192, ge=1)
    timeout: int = Field(default=120, description="Request timeout in seconds")


class CategorizationConfig(BaseModel):
    """How rows are turned into transactions."""

    oracle: Literal["rules", "llm"] = Field(default="rules", description="Who proposes transactions")
    institution: str = Field(default="generic", description="Settlement pattern / parse plan name")
    window_size: int = Field(default=30, ge=1, description="Rows sent to the oracle per batch")
    max_rate_limit_retries: int = Field(default=5, ge=0)
    default_retry_after_seconds: float = Field(default=120.0, ge=0.0)
    local_only: bool = Field(
        default=False,
        description="Never send data to external APIs (rule-based oracle and corrector only)",
    )


class ReconciliationConfig(BaseModel):
    """Balance reconciliation settings."""

    enabled: bool = True
    thresholds: SeverityThresholds = Field(default_factory=SeverityThresholds)
    max_iterations: int = Field(default=3, ge=0)
    min_fix_confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    balance_basis: Literal["cash", "total_value"] = "cash"
    context_rows: int = Field(default=10, ge=0, description="Rows around a discrepancy shown to the corrector")
    corrector: Literal["rules", "llm"] = "rules"


class LedgerConfig(BaseModel):
    """Root configuration for cascadeledger."""

    llm: LLMConfig = Field(default_factory=LLMConfig)
    categorization: CategorizationConfig = Field(default_factory=CategorizationConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)

    base_currency: str = Field(default="USD")
    account_name: str = Field(default="Brokerage")

    @classmethod
    def load(cls, config_path: str | None = None, **overrides: Any) -> LedgerConfig:
        """Load configuration from file, env vars, and overrides.

        Priority: overrides > env vars > config file > defaults.
        """
        data: dict[str, Any] = {}

        # 1. Load from YAML file if provided
        if config_path:
            path = Path(config_path)
            if path.exists():
                with open(path) as f:
                    data = yaml.safe_load(f) or {}

        # 2. Override from environment variables
        env_model = os.environ.get("CASCADELEDGER_MODEL")
        env_key = os.environ.get("CASCADELEDGER_API_KEY") or os.environ.get("ANTHROPIC_API_KEY")
        env_base = os.environ.get("CASCADELEDGER_API_BASE")
        env_local = os.environ.get("CASCADELEDGER_LOCAL_ONLY")
        env_institution = os.environ.get("CASCADELEDGER_INSTITUTION")

        if env_model or env_key or env_base:
            llm = data.get("llm", {})
            if env_model:
                llm["model"] = env_model
            if env_key:
                llm["api_key"] = env_key
            if env_base:
                llm["api_base"] = env_base
            data["llm"] = llm

        if env_institution or (env_local and env_local.lower() in ("1", "true", "yes")):
            categorization = data.get("categorization", {})
            if env_institution:
                categorization["institution"] = env_institution
            if env_local and env_local.lower() in ("1", "true", "yes"):
                categorization["local_only"] = True
            data["categorization"] = categorization

        # 3. Apply keyword overrides
        data.update(overrides)

        return cls.model_validate(data)
