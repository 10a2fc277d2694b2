"""Voice expense pipeline: classify → store → sync.

ExpenseClassifier.analyze tries Claude under a hard timeout and falls back
to the deterministic parser on any failure, so it never raises.

VoiceExpensePipeline runs one spoken phrase end to end. It refuses to
reprocess text that was just processed or is still in flight, and recovers
once from a deleted spreadsheet or sheet by recreating it and re-appending.
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from dataclasses import dataclass
from datetime import datetime

from voxledger.classify.claude_ai import (
    ClassificationError,
    ClassificationTimeout,
    classify_remote,
)
from voxledger.classify.fallback import FALLBACK_CATEGORY, parse_expense_fallback
from voxledger.database.models import DEFAULT_CURRENCY, Expense, ExpenseData
from voxledger.sheets.base import ContainerNotFound, RemoteSyncError
from voxledger.sheets.client import MissingCredential
from voxledger.taxonomy import Taxonomy

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 8.0


def call_with_timeout(claude_fn, system: str, prompt: str, timeout: float) -> str:
    """Run claude_fn on a worker thread and abandon it after timeout seconds.

    Raises:
        ClassificationTimeout: The call did not return in time.
    """
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    future = executor.submit(claude_fn, system, prompt)
    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError as e:
        future.cancel()
        raise ClassificationTimeout(f"Classifier did not answer within {timeout}s") from e
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


class ExpenseClassifier:
    """Turns free text into ExpenseData.

    Args:
        taxonomy: Category vocabulary embedded in the prompt.
        claude_fn: Callable (system, prompt) -> str, or None to use the
            fallback parser only.
        timeout: Seconds allowed for the remote call.
        default_currency: Currency when none is mentioned.
        fallback_category: Catch-all category for unrecognised text.
        clock: Callable returning the current datetime.
    """

    def __init__(
        self,
        taxonomy: Taxonomy | None = None,
        claude_fn=None,
        timeout: float = DEFAULT_TIMEOUT,
        default_currency: str = DEFAULT_CURRENCY,
        fallback_category: str = FALLBACK_CATEGORY,
        clock=datetime.now,
    ):
        self.taxonomy = taxonomy or Taxonomy()
        self.claude_fn = claude_fn
        self.timeout = timeout
        self.default_currency = default_currency
        self.fallback_category = fallback_category
        self._clock = clock

    def _timed_claude_fn(self, system: str, prompt: str) -> str:
        return call_with_timeout(self.claude_fn, system, prompt, self.timeout)

    def analyze(self, text: str) -> ExpenseData:
        """Classify text. Never raises; failures degrade to the fallback parser."""
        now = self._clock()
        if self.claude_fn is not None and text and text.strip():
            try:
                return classify_remote(
                    text, self.taxonomy, self._timed_claude_fn, now,
                    default_category=self.fallback_category,
                )
            except ClassificationError as e:
                logger.warning("Remote classification failed (%s: %s), using fallback parser",
                               type(e).__name__, e)
            except ValueError as e:
                logger.warning("Remote classification produced an invalid expense (%s), "
                               "using fallback parser", e)

        return parse_expense_fallback(
            text, now=now,
            default_currency=self.default_currency,
            default_category=self.fallback_category,
        )


# ── Pipeline ─────────────────────────────────────────────

STORED = "stored"
SKIPPED = "skipped"
ERROR = "error"


@dataclass
class PipelineResult:
    """Outcome of processing one phrase."""
    status: str  # STORED, SKIPPED or ERROR
    expense: Expense | None = None
    error: str | None = None


class VoiceExpensePipeline:
    """Classify a phrase, store it and mirror it to Sheets.

    Args:
        classifier: ExpenseClassifier (or anything with analyze(text)).
        store: ExpenseStore.
    """

    def __init__(self, classifier: ExpenseClassifier, store):
        self.classifier = classifier
        self.store = store
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._last_text: str | None = None
        self.last_error: str | None = None

    @property
    def is_processing(self) -> bool:
        with self._lock:
            return bool(self._in_flight)

    def _claim(self, text: str) -> bool:
        with self._lock:
            if text in self._in_flight or text == self._last_text:
                return False
            self._in_flight.add(text)
            return True

    def _release(self, text: str) -> None:
        with self._lock:
            self._in_flight.discard(text)
            self._last_text = text

    def process(self, text: str) -> PipelineResult:
        """Run one phrase through classify → store → sync.

        Identical text already in flight, or identical to the last processed
        phrase, is skipped. Distinct phrases are not serialised here.
        """
        key = (text or "").strip()
        if not key:
            return PipelineResult(SKIPPED, error="Empty text")
        if not self._claim(key):
            logger.info("Skipping repeated phrase: %r", key)
            return PipelineResult(SKIPPED)

        expense = None
        try:
            data = self.classifier.analyze(key)
            try:
                expense = self.store.add(data)
            except ContainerNotFound as e:
                expense = e.expense
                self._recover(e)
            self.last_error = None
            return PipelineResult(STORED, expense=expense)
        except (RemoteSyncError, MissingCredential) as e:
            self.last_error = str(e)
            logger.error("Failed to sync expense after recreating container: %s", e)
            return PipelineResult(ERROR, expense=expense, error=str(e))
        finally:
            self._release(key)

    def _recover(self, exc: ContainerNotFound) -> None:
        logger.warning("%s '%s' is missing, recreating and retrying once",
                       exc.scope.capitalize(), exc.sheet_name)
        self.store.retry_remote_append(exc)
