"""Tests for the classifier front end and the classify → store → sync pipeline."""

from __future__ import annotations

import json
import threading
import time
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from voxledger.classify.claude_ai import ClassificationNetworkError, ClassificationTimeout
from voxledger.classify.pipeline import (
    ERROR,
    SKIPPED,
    STORED,
    ExpenseClassifier,
    VoiceExpensePipeline,
    call_with_timeout,
)
from voxledger.database.models import ExpenseData
from voxledger.database.store import ExpenseStore
from voxledger.sheets.push import HEADERS, RowSheetsSync

from tests.fakes import make_api_error

NOW = datetime(2026, 10, 19, 12, 0, 0)


def _classifier(claude_fn=None, timeout=1.0):
    return ExpenseClassifier(claude_fn=claude_fn, timeout=timeout, clock=lambda: NOW)


class StubClassifier:
    def analyze(self, text):
        return ExpenseData(amount=3.5, category="Еда", subcategory="Кофейня", description=text)


class BlockingClassifier(StubClassifier):
    """Holds analyze() open until released, to keep a phrase in flight."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def analyze(self, text):
        self.calls += 1
        self.started.set()
        self.release.wait(5)
        return super().analyze(text)


# ── Timeout helper ───────────────────────────────────────


class TestCallWithTimeout:
    def test_returns_result(self):
        assert call_with_timeout(lambda s, p: s + p, "a", "b", timeout=1.0) == "ab"

    def test_times_out(self):
        release = threading.Event()

        def slow(system, prompt):
            release.wait(5)
            return "{}"

        start = time.monotonic()
        with pytest.raises(ClassificationTimeout):
            call_with_timeout(slow, "s", "p", timeout=0.05)
        assert time.monotonic() - start < 2
        release.set()

    def test_exceptions_propagate(self):
        def broken(system, prompt):
            raise ClassificationNetworkError("503")

        with pytest.raises(ClassificationNetworkError):
            call_with_timeout(broken, "s", "p", timeout=1.0)


# ── ExpenseClassifier ────────────────────────────────────


class TestExpenseClassifier:
    def test_remote_success(self):
        claude_fn = MagicMock(return_value='Result: {"amount": 4, "category": "Еда", '
                                          '"subcategory": "Кофейня", "description": "Латте"}')
        data = _classifier(claude_fn).analyze("латте 4 евро")
        assert data.amount == 4.0
        assert data.subcategory == "Кофейня"
        assert data.description == "Латте"
        claude_fn.assert_called_once()

    def test_no_claude_fn_uses_fallback(self):
        data = _classifier().analyze("такси 12,50 евро")
        assert data.amount == 12.5
        assert data.category == "Транспорт"
        assert data.description == "такси 12,50 евро"

    def test_network_error_falls_back(self):
        claude_fn = MagicMock(side_effect=make_api_error(503, "unavailable"))
        data = _classifier(claude_fn).analyze("кофе 3 евро")
        assert data.amount == 3.0
        assert data.category == "Еда"

    def test_malformed_reply_falls_back(self):
        claude_fn = MagicMock(return_value="not json at all")
        data = _classifier(claude_fn).analyze("обед 15 евро")
        assert data.amount == 15.0

    def test_wrongly_typed_reply_falls_back(self):
        claude_fn = MagicMock(return_value=json.dumps({"amount": "a lot"}))
        data = _classifier(claude_fn).analyze("обед 15 евро")
        assert data.amount == 15.0

    def test_timeout_falls_back(self):
        release = threading.Event()

        def slow(system, prompt):
            release.wait(5)
            return '{"amount": 99}'

        data = _classifier(slow, timeout=0.05).analyze("кофе 2 евро")
        release.set()
        assert data.amount == 2.0

    def test_blank_text_skips_remote_call(self):
        claude_fn = MagicMock()
        data = _classifier(claude_fn).analyze("   ")
        claude_fn.assert_not_called()
        assert data.amount == 0.0

    def test_never_raises_on_unexpected_error(self):
        claude_fn = MagicMock(side_effect=RuntimeError("boom"))
        data = _classifier(claude_fn).analyze("🎉")
        assert data.amount >= 0
        assert data.category


# ── Re-processing guard ──────────────────────────────────


class TestReprocessingGuard:
    def test_identical_text_in_flight_stored_once(self, kv):
        store = ExpenseStore(kv)
        classifier = BlockingClassifier()
        pipeline = VoiceExpensePipeline(classifier, store)
        results = []

        worker = threading.Thread(target=lambda: results.append(pipeline.process("кофе 3 евро")))
        worker.start()
        assert classifier.started.wait(5)
        assert pipeline.is_processing

        second = pipeline.process("кофе 3 евро")
        classifier.release.set()
        worker.join(5)

        assert second.status == SKIPPED
        assert results[0].status == STORED
        assert classifier.calls == 1
        assert len(store.expenses) == 1
        assert not pipeline.is_processing

    def test_repeat_of_last_text_skipped(self, kv):
        store = ExpenseStore(kv)
        pipeline = VoiceExpensePipeline(StubClassifier(), store)
        assert pipeline.process("кофе 3 евро").status == STORED
        assert pipeline.process(" кофе 3 евро ").status == SKIPPED
        assert len(store.expenses) == 1

    def test_distinct_texts_not_blocked(self, kv):
        store = ExpenseStore(kv)
        pipeline = VoiceExpensePipeline(StubClassifier(), store)
        assert pipeline.process("кофе 3 евро").status == STORED
        assert pipeline.process("чай 2 евро").status == STORED
        assert pipeline.process("кофе 3 евро").status == STORED
        assert len(store.expenses) == 3

    def test_empty_text_skipped(self, kv):
        pipeline = VoiceExpensePipeline(StubClassifier(), ExpenseStore(kv))
        result = pipeline.process("  ")
        assert result.status == SKIPPED
        assert result.expense is None


# ── ContainerNotFound recovery ───────────────────────────


class TestContainerRecovery:
    def _pipeline(self, kv, connection, fixed_naming, no_wait_limiter):
        sync = RowSheetsSync(connection, naming=fixed_naming, rate_limiter=no_wait_limiter)
        store = ExpenseStore(kv, sync=sync)
        return VoiceExpensePipeline(StubClassifier(), store), store

    def test_deleted_spreadsheet_recreated_and_appended(
        self, kv, fake_client, spreadsheet, connection, fixed_naming, no_wait_limiter,
    ):
        saved = []
        connection.on_recreated = saved.append
        pipeline, store = self._pipeline(kv, connection, fixed_naming, no_wait_limiter)
        fake_client.delete(spreadsheet.id)

        result = pipeline.process("кофе 3.50 евро")

        assert result.status == STORED
        assert pipeline.last_error is None
        assert saved == [connection.spreadsheet_id]
        assert connection.spreadsheet_id != spreadsheet.id
        new_ss = fake_client.open_by_key(connection.spreadsheet_id)
        rows = new_ss.worksheet("Расходы").get_all_values()
        assert rows[0] == HEADERS
        assert rows[1][3] == "кофе 3.50 евро"
        assert len(store.expenses) == 1

    def test_sheet_deleted_mid_write_recreated_and_appended(
        self, kv, spreadsheet, connection, fixed_naming, no_wait_limiter, monkeypatch,
    ):
        stale = spreadsheet.add_worksheet("Расходы", rows=10, cols=12)
        spreadsheet.del_worksheet(stale)
        real_worksheet = spreadsheet.worksheet
        handed_out = []

        def worksheet(title):
            if not handed_out:
                handed_out.append(stale)
                return stale
            return real_worksheet(title)

        monkeypatch.setattr(spreadsheet, "worksheet", worksheet)
        pipeline, store = self._pipeline(kv, connection, fixed_naming, no_wait_limiter)

        result = pipeline.process("такси 12 евро")

        assert result.status == STORED
        rows = real_worksheet("Расходы").get_all_values()
        assert len(rows) == 2
        assert rows[1][3] == "такси 12 евро"

    def test_missing_sheet_created_lazily_without_error(
        self, kv, spreadsheet, connection, fixed_naming, no_wait_limiter,
    ):
        pipeline, _ = self._pipeline(kv, connection, fixed_naming, no_wait_limiter)
        assert pipeline.process("кофе 3 евро").status == STORED
        spreadsheet.del_worksheet(spreadsheet.worksheet("Расходы"))

        assert pipeline.process("чай 2 евро").status == STORED
        rows = spreadsheet.worksheet("Расходы").get_all_values()
        assert [r[3] for r in rows[1:]] == ["чай 2 евро"]

    def test_failed_retry_reported_once(
        self, kv, fake_client, spreadsheet, connection, fixed_naming, no_wait_limiter,
    ):
        pipeline, store = self._pipeline(kv, connection, fixed_naming, no_wait_limiter)
        fake_client.delete(spreadsheet.id)
        fake_client.create = MagicMock(side_effect=make_api_error(403, "quota exceeded"))

        result = pipeline.process("кофе 3 евро")

        assert result.status == ERROR
        assert "quota exceeded" in result.error
        assert pipeline.last_error == result.error
        assert result.expense is not None
        assert len(store.expenses) == 1
        fake_client.create.assert_called_once()
