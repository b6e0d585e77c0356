"""cascadeledger agents — categorization oracles and reconciliation correctors."""

from cascadeledger.agents.base import (
    BaseAgent,
    CategorizationOracle,
    OracleContext,
    OracleProposal,
)
from cascadeledger.agents.categorizer import LLMCategorizationOracle
from cascadeledger.agents.investigator import DiscrepancyInvestigator
from cascadeledger.agents.rules import RuleBasedOracle

__all__ = [
    "BaseAgent",
    "CategorizationOracle",
    "DiscrepancyInvestigator",
    "LLMCategorizationOracle",
    "OracleContext",
    "OracleProposal",
    "RuleBasedOracle",
]
