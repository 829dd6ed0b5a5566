"""Dead-letter path for records that redelivery cannot fix."""

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from cdc_fanout.models.enums import RecordStatus
from cdc_fanout.models.results import SinkFailure
from cdc_fanout.sinks.serialization import to_dict

logger = logging.getLogger(__name__)


@dataclass
class DeadLetter:
    """A rejected or terminally failed record kept for manual inspection."""

    record_id: str
    status: RecordStatus
    error_type: str
    reason: str
    source: str = ""
    tenant_id: str | None = None
    entity_id: str | None = None
    record: dict[str, Any] | None = None
    failures: list[SinkFailure] = field(default_factory=list)
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class DeadLetterQueue(Protocol):
    """Destination for dead letters. ``publish`` raises if the letter was not kept."""

    def publish(self, letter: DeadLetter) -> None: ...


class JsonLinesDeadLetterQueue:
    """Append dead letters to a JSON Lines file.

    Parameters
    ----------
    output_dir : str | Path
        Directory for the ``.jsonl`` file.
    filename : str
        File name inside ``output_dir``.
    """

    def __init__(self, output_dir: str | Path, filename: str = "dead_letters.jsonl") -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.file_path = self.output_dir / filename
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def publish(self, letter: DeadLetter) -> None:
        line = json.dumps(to_dict(letter), ensure_ascii=False, default=str)
        with self._lock:
            with open(self.file_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
            self._counts[letter.status.value] = self._counts.get(letter.status.value, 0) + 1

    def close(self) -> None:
        """Log a summary of what was written."""
        for status, count in self._counts.items():
            logger.info("Dead letters written to %s: %s=%d", self.file_path, status, count)
