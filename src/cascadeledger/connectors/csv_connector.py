"""
CSV Connector — read brokerage CSV exports into numbered source rows.

Brokerage exports are rarely clean: a byte-order mark, blank lines above
the header, and legal boilerplate after the data are all common. The
connector strips those, reads the remaining table with pandas (every value
kept as the raw string), and numbers rows globally across all files so
row numbers stay stable on re-parse.
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from cascadeledger.models.rows import SourceRow

logger = logging.getLogger("cascadeledger.connectors.csv")

# Lines containing any of these are legal boilerplate, not data.
DISCLAIMER_PATTERNS = (
    "brokerage services provided by",
    "member sipc",
    "fdic insured",
    "copyright ",
    "all rights reserved",
    "terms and conditions",
    "privacy policy",
    "for questions about",
    "please visit",
    "disclosures:",
    "legal notice",
)

MIN_LINE_LENGTH = 5


def is_non_data_line(line: str) -> bool:
    """Whether a raw CSV line is boilerplate or too short to be a data row."""
    lowered = line.lower()
    if any(pattern in lowered for pattern in DISCLAIMER_PATTERNS):
        return True
    return len(line.strip()) < MIN_LINE_LENGTH


class CSVConnector:
    """Read one or more CSV exports into :class:`SourceRow` objects.

    Usage::

        connector = CSVConnector(file_paths=["2023.csv", "2024.csv"])
        rows = connector.load()

    Row numbers continue across files in the order given.
    """

    name = "csv"
    description = "Import brokerage history from CSV exports"

    def __init__(
        self,
        file_path: str | None = None,
        file_paths: list[str] | None = None,
        **options: Any,
    ) -> None:
        paths = list(file_paths or [])
        if file_path:
            paths.insert(0, file_path)
        self.file_paths = paths
        self.encoding = options.get("encoding", "utf-8")
        self.delimiter = options.get("delimiter", ",")
        self.balance_column: str | None = options.get("balance_column")

    def load(self) -> list[SourceRow]:
        """Read every configured file.

        Raises:
            FileNotFoundError: A configured file does not exist.
        """
        rows: list[SourceRow] = []
        for file_path in self.file_paths:
            path = Path(file_path)
            if not path.exists():
                raise FileNotFoundError(f"CSV file not found: {file_path}")
            text = path.read_text(encoding=self.encoding)
            rows.extend(self.parse_text(text, source_file=path.name, start_row=len(rows) + 1))
        logger.info("Read %d rows from %d file(s)", len(rows), len(self.file_paths))
        return rows

    async def pull(self) -> list[SourceRow]:
        """Async variant of :meth:`load` for pipeline use."""
        return self.load()

    async def validate_credentials(self) -> bool:
        """Check that every CSV file exists and is readable."""
        return all(Path(p).is_file() for p in self.file_paths)

    def parse_text(self, text: str, source_file: str = "input.csv", start_row: int = 1) -> list[SourceRow]:
        """Parse CSV text; row numbers start at ``start_row``."""
        text = text.lstrip("﻿")
        lines = [line for line in text.splitlines() if line.strip()]
        if not lines:
            return []

        header, body = lines[0], [line for line in lines[1:] if not is_non_data_line(line)]
        dropped = len(lines) - 1 - len(body)
        if dropped:
            logger.debug("Dropped %d non-data lines from %s", dropped, source_file)
        if not body:
            return []

        # Rows longer than the header are truncated, shorter ones padded by pandas.
        expected = len(pd.read_csv(io.StringIO(header), sep=self.delimiter, dtype=str, nrows=0).columns)
        df = pd.read_csv(
            io.StringIO("\n".join([header, *body])),
            sep=self.delimiter,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            engine="python",
            on_bad_lines=lambda fields: fields[:expected],
        )
        df = df.fillna("")
        df.columns = [str(c).strip() for c in df.columns]

        rows: list[SourceRow] = []
        for offset, record in enumerate(df.to_dict(orient="records")):
            fields = {k: str(v) for k, v in record.items()}
            rows.append(
                SourceRow(
                    row_number=start_row + offset,
                    source_file=source_file,
                    fields=fields,
                    reported_balance=self._balance(fields),
                )
            )
        return rows

    def _balance(self, fields: dict[str, str]) -> Any:
        if not self.balance_column:
            return None
        raw = fields.get(self.balance_column, "").replace("$", "").replace(",", "").strip()
        return raw or None
