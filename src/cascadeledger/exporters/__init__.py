"""Exporters package — convert reports to various output formats."""
from cascadeledger.exporters.markdown import render_markdown

__all__ = ["render_markdown"]
