"""Outcomes reported by sinks, the dispatcher and the batch coordinator."""

from dataclasses import dataclass, field

from cdc_fanout.models.enums import RecordStatus


@dataclass(frozen=True)
class SinkResult:
    """Outcome of applying one event to one sink."""

    ok: bool
    reason: str = ""
    retryable: bool = False

    @classmethod
    def success(cls) -> "SinkResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str, retryable: bool) -> "SinkResult":
        return cls(ok=False, reason=reason, retryable=retryable)


@dataclass(frozen=True)
class SinkFailure:
    """A failed sink, as collected by the dispatcher."""

    sink: str
    reason: str
    retryable: bool
    required: bool = True


@dataclass
class DispatchResult:
    """Outcome of fanning one event out to every sink."""

    processed: bool
    failures: list[SinkFailure] = field(default_factory=list)

    @property
    def retryable(self) -> bool:
        """True when a required sink failed in a way redelivery can fix."""
        return any(f.required and f.retryable for f in self.failures)


@dataclass
class RecordOutcome:
    """Terminal status of one change record within a batch."""

    record_id: str
    status: RecordStatus
    error: str | None = None
    failures: list[SinkFailure] = field(default_factory=list)
    tenant_id: str | None = None
    entity_id: str | None = None


@dataclass
class BatchResult:
    """Aggregated outcome of one delivery unit."""

    outcomes: list[RecordOutcome] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return sum(1 for o in self.outcomes if o.status is RecordStatus.PROCESSED)

    @property
    def failed(self) -> int:
        return len(self.outcomes) - self.successful

    @property
    def errors(self) -> list[dict[str, str | None]]:
        return [
            {"record_id": o.record_id, "status": o.status.value, "error": o.error}
            for o in self.outcomes
            if o.status is not RecordStatus.PROCESSED
        ]

    @property
    def redelivery_ids(self) -> list[str]:
        return [o.record_id for o in self.outcomes if o.status is RecordStatus.RETRY]

    @property
    def should_redeliver(self) -> bool:
        return bool(self.redelivery_ids)

    def summary(self) -> dict[str, object]:
        """Counts in the shape logged and returned by the entry points."""
        return {
            "successful": self.successful,
            "failed": self.failed,
            "redeliver": self.should_redeliver,
            "errors": self.errors,
        }
