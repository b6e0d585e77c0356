"""Tests for categorization sessions and the windowed pipeline."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from cascadeledger.agents.base import OracleContext, OracleProposal
from cascadeledger.agents.rules import RuleBasedOracle
from cascadeledger.analyzers.settlement import get_pattern
from cascadeledger.config import CategorizationConfig
from cascadeledger.errors import NoRowsError, OracleFailedError, RateLimitedError, SessionNotCompleteError
from cascadeledger.models.rows import SourceRow, TypedRow
from cascadeledger.session import (
    Batch,
    CategorizationPipeline,
    CategorizationSession,
    SessionMode,
    SessionSnapshot,
    SessionStatus,
    fingerprint,
)


def _row(n: int, action: str = "", amount: str | None = None, **extra) -> TypedRow:
    values = {"date": date(2024, 5, n), "action": action, **extra}
    if amount is not None:
        values["amount"] = Decimal(amount)
    return TypedRow(row_number=n, values=values)


def _history() -> list[TypedRow]:
    """Six rows; the AAPL purchase settles on the row after it."""
    return [
        _row(1, "DEPOSIT", "1000"),
        _row(2, "YOU BOUGHT", symbol="AAPL", quantity=Decimal("10")),
        _row(3, amount="-500"),
        _row(4, "DIVIDEND RECEIVED", "5", symbol="AAPL"),
        _row(5, "YOU BOUGHT", symbol="MSFT", quantity=Decimal("1")),
        _row(6, amount="-300"),
    ]


def _oracle() -> RuleBasedOracle:
    return RuleBasedOracle(pattern=get_pattern("fidelity"))


def _pipeline(oracle=None, window_size: int = 3, **kwargs) -> CategorizationPipeline:
    config = CategorizationConfig(window_size=window_size, max_rate_limit_retries=2)
    return CategorizationPipeline(oracle or _oracle(), config, **kwargs)


class _FlakyOracle:
    """Raises the scripted errors first, then delegates to the rule-based oracle."""

    def __init__(self, *errors: Exception | None) -> None:
        self.errors = list(errors)
        self.inner = _oracle()
        self.windows: list[list[int]] = []

    async def propose(self, rows: list[TypedRow], context: OracleContext) -> OracleProposal:
        self.windows.append([r.row_number for r in rows])
        if self.errors:
            error = self.errors.pop(0)
            if error is not None:
                raise error
        return await self.inner.propose(rows, context)


class _FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestPipeline:
    @pytest.mark.asyncio
    async def test_group_across_window_boundary(self) -> None:
        session = CategorizationSession()
        await _pipeline().run(session, _history())

        assert session.is_complete
        assert session.processed_rows_count == 6
        assert [sorted(t.source_rows) for t in session.transactions] == [[1], [2, 3], [4], [5, 6]]
        assert [(b.window_start, b.window_end) for b in session.batches] == [(1, 1), (2, 6)]
        assert session.covered_rows == {1, 2, 3, 4, 5, 6}

    @pytest.mark.asyncio
    async def test_window_widens_when_nothing_consumed(self) -> None:
        rows = [
            _row(1, "YOU BOUGHT", symbol="VTI", quantity=Decimal("2")),
            _row(2, amount="-400"),
            _row(3, amount="-1"),
            _row(4, "DEPOSIT", "50"),
        ]
        oracle = _FlakyOracle()
        session = CategorizationSession()
        await _pipeline(oracle, window_size=2).run(session, rows)

        assert oracle.windows == [[1, 2], [1, 2, 3, 4]]
        assert [sorted(t.source_rows) for t in session.transactions] == [[1, 2, 3], [4]]
        assert len(session.batches) == 1

    @pytest.mark.asyncio
    async def test_no_rows(self) -> None:
        with pytest.raises(NoRowsError):
            await _pipeline().run(CategorizationSession(), [])

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self) -> None:
        sleep = _FakeSleep()
        statuses: list[SessionStatus] = []
        oracle = _FlakyOracle(RateLimitedError(7.5), RateLimitedError(7.5))
        session = CategorizationSession()

        await _pipeline(oracle, sleep=sleep, on_progress=lambda s: statuses.append(s.status)).run(session, _history())

        assert sleep.delays == [7.5, 7.5]
        assert SessionStatus.WAITING_FOR_RATE_LIMIT in statuses
        assert session.is_complete
        assert session.retry_after_seconds is None

    @pytest.mark.asyncio
    async def test_rate_limit_retries_are_bounded(self) -> None:
        sleep = _FakeSleep()
        oracle = _FlakyOracle(*[RateLimitedError(1.0)] * 5)
        session = CategorizationSession()

        await _pipeline(oracle, sleep=sleep).run(session, _history())

        assert session.status == SessionStatus.FAILED
        assert len(sleep.delays) == 2
        assert "rate limited" in session.error_message
        assert session.processed_rows_count == 0

    @pytest.mark.asyncio
    async def test_failure_then_resume(self) -> None:
        oracle = _FlakyOracle(None, OracleFailedError("model overloaded"))
        session = CategorizationSession()
        await _pipeline(oracle).run(session, _history())

        assert session.status == SessionStatus.FAILED
        assert session.is_paused
        assert not session.is_complete
        assert session.error_message == "model overloaded"
        assert session.processed_rows_count == 1
        with pytest.raises(SessionNotCompleteError):
            session.require_complete()

        await _pipeline(oracle).run(session, _history())

        assert session.is_complete
        assert session.error_message is None
        assert oracle.windows[2] == [2, 3, 4]
        rows = [r for t in session.transactions for r in sorted(t.source_rows)]
        assert rows == [1, 2, 3, 4, 5, 6]

    @pytest.mark.asyncio
    async def test_pause_and_resume(self) -> None:
        session = CategorizationSession()
        pipeline = _pipeline(window_size=2)
        pipeline.on_progress = lambda snapshot: pipeline.pause()

        await pipeline.run(session, _history())
        assert session.status == SessionStatus.PAUSED
        assert session.is_paused
        paused_at = session.processed_rows_count
        assert 0 < paused_at < 6

        await _pipeline(window_size=2).run(session, _history())
        assert session.is_complete
        assert len(session.transactions) == 4

    @pytest.mark.asyncio
    async def test_covered_rows_are_not_duplicated(self) -> None:
        session = CategorizationSession()
        await _pipeline().run(session, _history())
        session.processed_rows_count = 0
        session.status = SessionStatus.IDLE

        await _pipeline().run(session, _history())
        assert len(session.transactions) == 4

    @pytest.mark.asyncio
    async def test_progress_snapshots(self) -> None:
        snapshots: list[SessionSnapshot] = []
        session = CategorizationSession(name="2024 import")
        await _pipeline(on_progress=snapshots.append).run(session, _history())

        final = snapshots[-1]
        assert final.is_complete
        assert final.progress == 1.0
        assert final.transaction_count == 4
        assert final.name == "2024 import"
        assert snapshots[0].progress < 1.0


class TestSession:
    def _source(self, n: int, action: str) -> SourceRow:
        return SourceRow(row_number=n, source_file="export.csv", fields={"Action": action, "Amount ($)": str(n)})

    def test_add_batch_keeps_source_order(self) -> None:
        session = CategorizationSession()
        session.add_batch(Batch(window_start=10, window_end=12))
        session.add_batch(Batch(window_start=1, window_end=9))
        assert [b.window_start for b in session.batches] == [1, 10]

    def test_fingerprint_ignores_row_number(self) -> None:
        first = self._source(1, "DEPOSIT")
        assert fingerprint(first) == fingerprint(first.model_copy(update={"row_number": 9}))
        assert fingerprint(first) != fingerprint(self._source(2, "DEPOSIT"))

    def test_append_rows_skips_known(self) -> None:
        session = CategorizationSession()
        session.register_rows([self._source(1, "DEPOSIT"), self._source(2, "DIVIDEND")])
        session.status = SessionStatus.COMPLETED

        fresh = session.append_rows([self._source(1, "DEPOSIT"), self._source(2, "DIVIDEND"), self._source(3, "FEE")])

        assert [r.row_number for r in fresh] == [3]
        assert session.total_rows == 3
        assert session.mode == SessionMode.INCREMENTAL
        assert session.version == 2
        assert session.status == SessionStatus.IDLE

    def test_append_renumbers_after_existing_rows(self) -> None:
        session = CategorizationSession()
        session.register_rows([self._source(1, "DEPOSIT")])
        (fresh,) = session.append_rows([self._source(1, "INTEREST")])
        assert fresh.row_number == 2

    def test_append_nothing_new(self) -> None:
        session = CategorizationSession()
        session.register_rows([self._source(1, "DEPOSIT")])
        assert session.append_rows([self._source(1, "DEPOSIT")]) == []
        assert session.version == 1
        assert session.mode == SessionMode.FULL

    @pytest.mark.asyncio
    async def test_incremental_run_processes_only_new_rows(self) -> None:
        oracle = _FlakyOracle()
        session = CategorizationSession()
        history = _history()
        await _pipeline(oracle, window_size=10).run(session, history)

        session.append_rows([self._source(7, "INTEREST EARNED")])
        new_row = _row(7, "INTEREST EARNED", "1.25")
        await _pipeline(oracle, window_size=10).run(session, [*history, new_row])

        assert oracle.windows[-1] == [7]
        assert session.is_complete
        assert len(session.transactions) == 5

    @pytest.mark.asyncio
    async def test_restart(self) -> None:
        session = CategorizationSession()
        await _pipeline().run(session, _history())
        session.restart()

        assert session.mode == SessionMode.OVERRIDE
        assert session.transactions == []
        assert session.processed_rows_count == 0
        assert not session.is_complete

        await _pipeline().run(session, _history())
        assert len(session.transactions) == 4
