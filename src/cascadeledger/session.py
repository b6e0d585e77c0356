"""
Categorization sessions — the unit of progress, pause and resume.

A :class:`CategorizationSession` holds everything produced for one run over
an account's rows: the batches returned by the oracle (kept in source
order), the counters needed to resume exactly where the run stopped, and
the pause / error / rate-limit state. The :class:`CategorizationPipeline`
drives an oracle over the session's rows one window at a time.

Only one pipeline may run against a session at a time; reconciliation is a
terminal step gated on :attr:`CategorizationSession.is_complete`.
"""

from __future__ import annotations

import asyncio
import bisect
import hashlib
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict

from cascadeledger.agents.base import CategorizationOracle, OracleContext, OracleProposal
from cascadeledger.errors import (
    MaterializationError,
    NoRowsError,
    OracleFailedError,
    RateLimitedError,
    SessionNotCompleteError,
)
from cascadeledger.models.ledger import Account, Transaction
from cascadeledger.models.rows import SourceRow, TypedRow

if TYPE_CHECKING:
    from cascadeledger.config import CategorizationConfig

logger = logging.getLogger("cascadeledger.session")


class SessionMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    OVERRIDE = "override"


class SessionStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    WAITING_FOR_RATE_LIMIT = "waiting_for_rate_limit"
    PAUSED = "paused"
    FAILED = "failed"
    COMPLETED = "completed"


@dataclass
class Batch:
    """What the oracle returned for one window of rows.

    ``window_start`` and ``window_end`` are source row numbers (inclusive);
    ``window_end`` is the last row the session advanced past.
    """

    window_start: int
    window_end: int
    transactions: list[Transaction] = field(default_factory=list)
    errors: list[MaterializationError] = field(default_factory=list)
    input_tokens: int = 0
    output_tokens: int = 0
    duration_seconds: float = 0.0


class SessionSnapshot(BaseModel):
    """Immutable view of a session, handed to progress callbacks."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    mode: SessionMode
    version: int
    status: SessionStatus
    total_rows: int
    processed_rows_count: int
    excluded_rows: list[int]
    batch_count: int
    transaction_count: int
    error_count: int
    retry_after_seconds: Optional[float] = None
    error_message: Optional[str] = None
    is_complete: bool
    is_paused: bool
    input_tokens: int = 0
    output_tokens: int = 0
    duration_seconds: float = 0.0

    @property
    def progress(self) -> float:
        if self.total_rows == 0:
            return 0.0
        return min(1.0, self.processed_rows_count / self.total_rows)


def fingerprint(row: SourceRow) -> str:
    """SHA-256 of a row's field values, independent of its row number."""
    values = [row.fields[k] for k in sorted(row.fields)]
    return hashlib.sha256("|".join(values).encode("utf-8")).hexdigest()


@dataclass
class CategorizationSession:
    """Mutable aggregate for one categorization run.

    Usage::

        session = CategorizationSession(account=account, name="2024 import")
        session.register_rows(source_rows)
        await pipeline.run(session, typed_rows)
        if session.is_complete:
            ...
    """

    account: Account = field(default_factory=lambda: Account(name="Brokerage"))
    name: str = ""
    mode: SessionMode = SessionMode.FULL
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    version: int = 1
    created_at: datetime = field(default_factory=datetime.utcnow)

    total_rows: int = 0
    processed_rows_count: int = 0
    excluded_rows: set[int] = field(default_factory=set)
    batches: list[Batch] = field(default_factory=list)
    rejected: list[MaterializationError] = field(default_factory=list)

    status: SessionStatus = SessionStatus.IDLE
    retry_after_seconds: float | None = None
    error_message: str | None = None

    source_row_hashes: dict[str, int] = field(default_factory=dict)

    # --- derived state -------------------------------------------------

    @property
    def transactions(self) -> list[Transaction]:
        return [t for batch in self.batches for t in batch.transactions]

    @property
    def materialization_errors(self) -> list[MaterializationError]:
        return list(self.rejected) + [e for batch in self.batches for e in batch.errors]

    @property
    def covered_rows(self) -> set[int]:
        return {r for t in self.transactions for r in t.source_rows}

    @property
    def is_complete(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    @property
    def is_paused(self) -> bool:
        return self.status in (SessionStatus.PAUSED, SessionStatus.FAILED)

    @property
    def input_tokens(self) -> int:
        return sum(b.input_tokens for b in self.batches)

    @property
    def output_tokens(self) -> int:
        return sum(b.output_tokens for b in self.batches)

    @property
    def duration_seconds(self) -> float:
        return sum(b.duration_seconds for b in self.batches)

    # --- mutation ------------------------------------------------------

    def add_batch(self, batch: Batch) -> None:
        """Insert a batch at its source-order position."""
        starts = [b.window_start for b in self.batches]
        self.batches.insert(bisect.bisect_right(starts, batch.window_start), batch)

    def register_rows(self, rows: list[SourceRow]) -> None:
        """Record the initial source rows of a full session."""
        for row in rows:
            self.source_row_hashes.setdefault(fingerprint(row), row.row_number)
        self.total_rows = max([self.total_rows, *(r.row_number for r in rows)])

    def append_rows(self, rows: list[SourceRow]) -> list[SourceRow]:
        """Add rows from a newer export, skipping ones already seen.

        Unseen rows are renumbered to follow ``total_rows`` and the session
        is re-opened so the pipeline picks them up. Returns the new rows.
        """
        fresh: list[SourceRow] = []
        for row in rows:
            digest = fingerprint(row)
            if digest in self.source_row_hashes:
                continue
            number = self.total_rows + len(fresh) + 1
            fresh.append(row.model_copy(update={"row_number": number}))
            self.source_row_hashes[digest] = number

        if fresh:
            self.total_rows += len(fresh)
            self.mode = SessionMode.INCREMENTAL
            self.version += 1
            self.status = SessionStatus.IDLE
            logger.info("Session %s: appended %d new rows (%d duplicates skipped)", self.id, len(fresh), len(rows) - len(fresh))
        return fresh

    def restart(self) -> None:
        """Discard all batches and categorize every row again."""
        self.batches.clear()
        self.rejected.clear()
        self.processed_rows_count = 0
        self.mode = SessionMode.OVERRIDE
        self.version += 1
        self.status = SessionStatus.IDLE
        self.error_message = None

    def require_complete(self) -> None:
        if not self.is_complete:
            raise SessionNotCompleteError(
                f"session {self.id} is {self.status.value} "
                f"({self.processed_rows_count}/{self.total_rows} rows processed)"
            )

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            id=self.id,
            name=self.name,
            mode=self.mode,
            version=self.version,
            status=self.status,
            total_rows=self.total_rows,
            processed_rows_count=self.processed_rows_count,
            excluded_rows=sorted(self.excluded_rows),
            batch_count=len(self.batches),
            transaction_count=len(self.transactions),
            error_count=len(self.materialization_errors),
            retry_after_seconds=self.retry_after_seconds,
            error_message=self.error_message,
            is_complete=self.is_complete,
            is_paused=self.is_paused,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            duration_seconds=self.duration_seconds,
        )


ProgressCallback = Callable[[SessionSnapshot], None]


class CategorizationPipeline:
    """Feeds a session's rows to an oracle, one window at a time.

    Windows are processed strictly in sequence starting after
    ``processed_rows_count``. When the oracle says a transaction may
    continue past the window, the session advances only past the rows it
    consumed and the next window is widened to include the rest.

    Usage::

        pipeline = CategorizationPipeline(RuleBasedOracle(), config.categorization)
        await pipeline.run(session, typed_rows)
    """

    def __init__(
        self,
        oracle: CategorizationOracle,
        config: CategorizationConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if config is None:
            from cascadeledger.config import CategorizationConfig

            config = CategorizationConfig()
        self.oracle = oracle
        self.config = config
        self._sleep = sleep
        self.on_progress = on_progress
        self._pause_requested = False

    def pause(self) -> None:
        """Stop at the next batch boundary."""
        self._pause_requested = True

    async def run(self, session: CategorizationSession, rows: list[TypedRow]) -> CategorizationSession:
        """Process every unprocessed row of ``session``.

        Returns when the session is completed, paused or failed.

        Raises:
            NoRowsError: There is nothing to categorize at all.
        """
        if not rows and session.total_rows == 0:
            raise NoRowsError(f"session {session.id} has no source rows")

        ordered = sorted(rows, key=lambda r: r.row_number)
        session.total_rows = max([session.total_rows, *(r.row_number for r in ordered)])
        self._pause_requested = False
        session.status = SessionStatus.PROCESSING
        session.error_message = None

        if session.processed_rows_count:
            logger.info("Resuming session %s at row %d", session.id, session.processed_rows_count + 1)
        else:
            logger.info("Starting session %s over %d rows", session.id, session.total_rows)

        window_size = self.config.window_size
        width = window_size
        while True:
            remaining = [r for r in ordered if r.row_number > session.processed_rows_count]
            if not remaining:
                break
            if self._pause_requested:
                session.status = SessionStatus.PAUSED
                logger.info("Session %s paused at row %d", session.id, session.processed_rows_count)
                self._notify(session)
                return session

            window = remaining[:width]
            has_more = len(remaining) > len(window)
            context = OracleContext(
                account=session.account,
                window_start=window[0].row_number,
                total_rows=session.total_rows,
                processed_transactions=len(session.transactions),
                has_more_rows=has_more,
                covered_rows=frozenset(session.covered_rows),
            )

            started = time.monotonic()
            proposal = await self._propose(session, window, context)
            if proposal is None:
                self._notify(session)
                return session
            elapsed = time.monotonic() - started

            consumed = sorted(proposal.consumed_rows & {r.row_number for r in window})
            if proposal.needs_more_rows and has_more:
                if not consumed:
                    width += window_size
                    logger.debug("Nothing consumed from rows %d-%d; widening window to %d", window[0].row_number, window[-1].row_number, width)
                    continue
                advance_to = consumed[-1]
                width = window_size + sum(1 for r in window if r.row_number > advance_to)
            else:
                advance_to = window[-1].row_number
                width = window_size

            self._merge(session, window[0].row_number, advance_to, proposal, elapsed)
            session.processed_rows_count = advance_to
            self._notify(session)

        session.processed_rows_count = session.total_rows
        session.status = SessionStatus.COMPLETED
        session.retry_after_seconds = None
        logger.info(
            "Session %s completed: %d transactions, %d errors",
            session.id, len(session.transactions), len(session.materialization_errors),
        )
        self._notify(session)
        return session

    async def _propose(
        self, session: CategorizationSession, window: list[TypedRow], context: OracleContext
    ) -> OracleProposal | None:
        attempts = 0
        while True:
            try:
                proposal = await self.oracle.propose(window, context)
            except RateLimitedError as e:
                attempts += 1
                if attempts > self.config.max_rate_limit_retries:
                    session.status = SessionStatus.FAILED
                    session.retry_after_seconds = None
                    session.error_message = f"still rate limited after {self.config.max_rate_limit_retries} retries"
                    logger.error("Session %s: %s", session.id, session.error_message)
                    return None
                session.status = SessionStatus.WAITING_FOR_RATE_LIMIT
                session.retry_after_seconds = e.retry_after_seconds
                logger.warning(
                    "Session %s rate limited; retrying in %.0fs (attempt %d)",
                    session.id, e.retry_after_seconds, attempts,
                )
                self._notify(session)
                await self._sleep(e.retry_after_seconds)
                session.status = SessionStatus.PROCESSING
                session.retry_after_seconds = None
                continue
            except OracleFailedError as e:
                session.status = SessionStatus.FAILED
                session.error_message = e.reason
                logger.error("Session %s failed at row %d: %s", session.id, window[0].row_number, e.reason)
                return None
            return proposal

    @staticmethod
    def _merge(
        session: CategorizationSession,
        start: int,
        end: int,
        proposal: OracleProposal,
        elapsed: float,
    ) -> None:
        covered = session.covered_rows
        kept = [t for t in proposal.transactions if not (t.source_rows and t.source_rows <= covered)]
        if len(kept) != len(proposal.transactions):
            logger.info("Dropped %d transactions for rows already covered", len(proposal.transactions) - len(kept))

        session.add_batch(
            Batch(
                window_start=start,
                window_end=end,
                transactions=kept,
                errors=list(proposal.errors),
                input_tokens=proposal.input_tokens,
                output_tokens=proposal.output_tokens,
                duration_seconds=elapsed,
            )
        )
        logger.info("Merged batch rows %d-%d: %d transactions", start, end, len(kept))

    def _notify(self, session: CategorizationSession) -> None:
        if self.on_progress is not None:
            self.on_progress(session.snapshot())
