"""Data connectors — CSV ingestion and parse plans."""

from cascadeledger.connectors.csv_connector import CSVConnector
from cascadeledger.connectors.parse_plan import FieldMapping, ParsePlan, available_plans, builtin_plan

__all__ = ["CSVConnector", "FieldMapping", "ParsePlan", "available_plans", "builtin_plan"]
