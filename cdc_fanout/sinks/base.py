"""Common contract for sink adapters."""

import logging
from abc import ABC, abstractmethod

from cdc_fanout.exceptions import SinkError
from cdc_fanout.models.events import DomainEvent
from cdc_fanout.models.results import SinkResult

logger = logging.getLogger(__name__)


class Sink(ABC):
    """A downstream system that receives derived writes for each event.

    Subclasses implement :meth:`write` and raise :class:`SinkError` on
    failure; :meth:`apply` turns that into a :class:`SinkResult`. Any other
    exception propagates to the dispatcher.
    """

    name: str = "sink"

    def apply(self, event: DomainEvent) -> SinkResult:
        """Apply one event and report the outcome."""
        try:
            self.write(event)
        except SinkError as exc:
            logger.warning(
                "Sink %s failed for %s %s/%s (retryable=%s): %s",
                self.name,
                event.event_type,
                event.tenant_id,
                event.entity_id,
                exc.retryable,
                exc,
            )
            return SinkResult.failure(str(exc), retryable=exc.retryable)
        return SinkResult.success()

    @abstractmethod
    def write(self, event: DomainEvent) -> None:
        """Write the event to the backing system."""

    def close(self) -> None:
        """Release backend resources."""
