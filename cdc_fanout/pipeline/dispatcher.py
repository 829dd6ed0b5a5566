"""Fan one domain event out to every registered sink."""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Iterable, Sequence

from cdc_fanout.exceptions import ConfigurationError
from cdc_fanout.models.events import DomainEvent
from cdc_fanout.models.results import DispatchResult, SinkFailure, SinkResult
from cdc_fanout.sinks.base import Sink

logger = logging.getLogger(__name__)


class SinkDispatcher:
    """Apply an event to each sink with isolated failures and a per-sink timeout.

    Every sink runs regardless of how the others fare. The event counts as
    processed when no *required* sink failed; failures of optional sinks are
    reported and logged for out-of-band remediation but do not hold the
    event back.

    Parameters
    ----------
    sinks : Sequence[Sink]
        Sink adapters; names must be unique.
    required : Iterable[str] | None
        Names of sinks whose failure fails the event (default: all).
    timeout_seconds : float
        Longest wait for any one sink call.
    max_workers : int
        Size of the thread pool sink calls run on.
    """

    def __init__(
        self,
        sinks: Sequence[Sink],
        required: Iterable[str] | None = None,
        timeout_seconds: float = 10.0,
        max_workers: int = 16,
    ) -> None:
        names = [sink.name for sink in sinks]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Sink names must be unique: {names}")

        self.sinks = list(sinks)
        self.required = set(names) if required is None else set(required)
        unknown = self.required - set(names)
        if unknown:
            raise ConfigurationError(f"Required sinks are not registered: {', '.join(sorted(unknown))}")

        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sink")

    def dispatch(self, event: DomainEvent, deadline: float | None = None) -> DispatchResult:
        """Apply ``event`` to every sink.

        Parameters
        ----------
        event : DomainEvent
            Event to fan out.
        deadline : float | None
            ``time.monotonic()`` value after which waiting stops; calls still
            running then are abandoned and reported retryable.

        Returns
        -------
        DispatchResult
            ``processed`` plus one :class:`SinkFailure` per failed sink.
        """
        started = time.monotonic()
        futures: list[tuple[Sink, Future[SinkResult]]] = [
            (sink, self._executor.submit(sink.apply, event)) for sink in self.sinks
        ]

        failures = []
        for sink, future in futures:
            failure = self._collect(sink, future, event, started, self._wait_budget(started, deadline))
            if failure is not None:
                failures.append(failure)

        processed = not any(f.required for f in failures)
        if failures and processed:
            logger.warning(
                "Optional sinks failed for %s %s/%s: %s",
                event.event_type,
                event.tenant_id,
                event.entity_id,
                ", ".join(f"{f.sink} ({f.reason})" for f in failures),
            )
        return DispatchResult(processed=processed, failures=failures)

    def close(self) -> None:
        """Stop the sink pool and release sink backends."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        for sink in self.sinks:
            sink.close()

    def _collect(
        self,
        sink: Sink,
        future: Future[SinkResult],
        event: DomainEvent,
        started: float,
        budget: float,
    ) -> SinkFailure | None:
        required = sink.name in self.required
        try:
            result = future.result(timeout=budget)
        except FutureTimeoutError:
            future.cancel()
            waited = time.monotonic() - started
            logger.warning(
                "Sink %s timed out after %.2fs for %s/%s",
                sink.name,
                waited,
                event.tenant_id,
                event.entity_id,
            )
            return SinkFailure(sink.name, f"timed out after {waited:.2f}s", retryable=True, required=required)
        except Exception as exc:
            logger.exception("Sink %s raised unexpectedly for %s/%s", sink.name, event.tenant_id, event.entity_id)
            return SinkFailure(sink.name, f"unexpected error: {exc!r}", retryable=True, required=required)

        if result.ok:
            return None
        return SinkFailure(sink.name, result.reason, retryable=result.retryable, required=required)

    def _wait_budget(self, started: float, deadline: float | None) -> float:
        limit = started + self.timeout_seconds
        if deadline is not None:
            limit = min(limit, deadline)
        return max(0.0, limit - time.monotonic())
