"""Drive a batch of change records through decode, classify and dispatch."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Hashable, Sequence

from cdc_fanout.exceptions import DecodeError, ValidationError
from cdc_fanout.models.enums import RecordStatus
from cdc_fanout.models.events import DomainEvent
from cdc_fanout.models.records import ChangeRecord
from cdc_fanout.models.results import BatchResult, RecordOutcome, SinkFailure
from cdc_fanout.pipeline.classifier import classify
from cdc_fanout.pipeline.clock import MonotonicClock
from cdc_fanout.pipeline.decoder import decode_image, decode_operation
from cdc_fanout.pipeline.dispatcher import SinkDispatcher
from cdc_fanout.transport.dead_letter import DeadLetter, DeadLetterQueue

logger = logging.getLogger(__name__)


class BatchCoordinator:
    """Process one delivery unit from the transport.

    Records are grouped by partition key (tenant, entity). Groups run
    concurrently; the records of a group run strictly in arrival order, so
    an older UPDATE can never land after a newer DELETE. Once a record in a
    group needs redelivery, the rest of that group is held back for
    redelivery too.

    Decode and validation failures reject only the offending record, which
    goes to the dead-letter queue; its siblings carry on.

    Parameters
    ----------
    dispatcher : SinkDispatcher
        Fans events out to the sinks.
    dead_letter : DeadLetterQueue | None
        Where rejected and terminally failed records go.
    clock : Callable[[], datetime] | None
        Processing-time source for ``occurred_at``.
    max_workers : int
        Upper bound on partition groups processed at once.
    """

    def __init__(
        self,
        dispatcher: SinkDispatcher,
        dead_letter: DeadLetterQueue | None = None,
        clock: Callable[[], datetime] | None = None,
        max_workers: int = 8,
    ) -> None:
        self.dispatcher = dispatcher
        self.dead_letter = dead_letter
        self.clock = clock or MonotonicClock()
        self.max_workers = max_workers

    def process(self, records: Sequence[ChangeRecord], deadline: float | None = None) -> BatchResult:
        """Process a batch and aggregate per-record outcomes.

        Parameters
        ----------
        records : Sequence[ChangeRecord]
            Records in transport delivery order.
        deadline : float | None
            ``time.monotonic()`` value by which processing must stop.

        Returns
        -------
        BatchResult
            Outcomes in the same order as ``records``.
        """
        groups = self.group(records)
        outcomes: list[RecordOutcome | None] = [None] * len(records)

        if len(groups) <= 1 or self.max_workers <= 1:
            for group in groups:
                for index, outcome in self._process_group(group, deadline):
                    outcomes[index] = outcome
        else:
            with ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(groups)),
                thread_name_prefix="partition",
            ) as executor:
                futures = [executor.submit(self._process_group, group, deadline) for group in groups]
                for future in futures:
                    for index, outcome in future.result():
                        outcomes[index] = outcome

        result = BatchResult(outcomes=[o for o in outcomes if o is not None])
        logger.info(
            "Batch processed: records=%d successful=%d failed=%d redeliver=%s",
            len(records),
            result.successful,
            result.failed,
            result.should_redeliver,
        )
        return result

    @staticmethod
    def group(records: Sequence[ChangeRecord]) -> list[list[tuple[int, ChangeRecord]]]:
        """Split ``records`` by partition key, keeping arrival order in each group."""
        groups: dict[Hashable, list[tuple[int, ChangeRecord]]] = {}
        for index, record in enumerate(records):
            # Records without a readable key may share an entity, so they share a group
            key: Hashable = record.partition_key or "unkeyed"
            groups.setdefault(key, []).append((index, record))
        return list(groups.values())

    def process_record(self, record: ChangeRecord, deadline: float | None = None) -> RecordOutcome:
        """Decode, classify and dispatch a single record."""
        try:
            event = self.to_event(record)
        except (DecodeError, ValidationError) as exc:
            return self._dead_letter(record, RecordStatus.REJECTED, exc)

        dispatch = self.dispatcher.dispatch(event, deadline)
        if dispatch.processed:
            return self._outcome(record, RecordStatus.PROCESSED, event, failures=dispatch.failures)
        if dispatch.retryable:
            logger.warning(
                "Record %s (%s/%s) needs redelivery: %s",
                record.record_id,
                event.tenant_id,
                event.entity_id,
                _describe(dispatch.failures),
            )
            return self._outcome(
                record, RecordStatus.RETRY, event, error=_describe(dispatch.failures), failures=dispatch.failures
            )
        return self._dead_letter(record, RecordStatus.FAILED, None, event=event, failures=dispatch.failures)

    def to_event(self, record: ChangeRecord) -> DomainEvent:
        """Decode and classify ``record``; pure apart from the clock reading."""
        operation = decode_operation(record.event_name)
        return classify(
            operation,
            decode_image(record.new_image),
            decode_image(record.old_image),
            record.entity_kind,
            keys=decode_image(record.keys),
            clock=self.clock,
            source_record_id=record.record_id,
        )

    def _process_group(
        self,
        group: list[tuple[int, ChangeRecord]],
        deadline: float | None,
    ) -> list[tuple[int, RecordOutcome]]:
        results = []
        held_back: str | None = None
        for index, record in group:
            if held_back is None and deadline is not None and time.monotonic() >= deadline:
                held_back = "batch deadline exceeded"
            if held_back is not None:
                outcome = self._outcome(record, RecordStatus.RETRY, error=held_back)
            else:
                outcome = self.process_record(record, deadline)
                if outcome.status is RecordStatus.RETRY:
                    held_back = f"earlier record {record.record_id} for the same key needs redelivery"
            results.append((index, outcome))
        return results

    def _dead_letter(
        self,
        record: ChangeRecord,
        status: RecordStatus,
        exc: Exception | None,
        event: DomainEvent | None = None,
        failures: list[SinkFailure] | None = None,
    ) -> RecordOutcome:
        reason = str(exc) if exc is not None else _describe(failures or [])
        outcome = self._outcome(record, status, event, error=reason, failures=failures)
        logger.error(
            "Record %s %s: %s",
            record.record_id,
            "rejected" if status is RecordStatus.REJECTED else "failed terminally",
            reason,
            extra={
                "extra": {
                    "record_id": record.record_id,
                    "tenant_id": outcome.tenant_id,
                    "entity_id": outcome.entity_id,
                    "status": status.value,
                }
            },
        )
        if self.dead_letter is None:
            return outcome

        letter = DeadLetter(
            record_id=record.record_id,
            status=status,
            error_type=type(exc).__name__ if exc is not None else "SinkError",
            reason=reason,
            source=record.source,
            tenant_id=outcome.tenant_id,
            entity_id=outcome.entity_id,
            record=record.raw,
            failures=list(failures or []),
        )
        try:
            self.dead_letter.publish(letter)
        except Exception:
            # Not acknowledged, so the transport brings the record back
            logger.exception("Dead-letter publish failed for record %s", record.record_id)
            outcome.status = RecordStatus.RETRY
            outcome.error = f"{reason} (dead-letter publish failed)"
        return outcome

    @staticmethod
    def _outcome(
        record: ChangeRecord,
        status: RecordStatus,
        event: DomainEvent | None = None,
        error: str | None = None,
        failures: list[SinkFailure] | None = None,
    ) -> RecordOutcome:
        if event is not None:
            tenant_id, entity_id = event.tenant_id, event.entity_id
        elif record.partition_key is not None:
            tenant_id, entity_id = record.partition_key.tenant_id, record.partition_key.entity_id
        else:
            tenant_id = entity_id = None
        return RecordOutcome(
            record_id=record.record_id,
            status=status,
            error=error,
            failures=list(failures or []),
            tenant_id=tenant_id,
            entity_id=entity_id,
        )


def _describe(failures: list[SinkFailure]) -> str:
    return "; ".join(f"{f.sink}: {f.reason}" for f in failures)
