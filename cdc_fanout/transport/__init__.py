"""Transport adapters between change-log sources and the pipeline."""

from cdc_fanout.transport.dead_letter import DeadLetter, DeadLetterQueue, JsonLinesDeadLetterQueue
from cdc_fanout.transport.dynamodb_stream import build_response, parse_stream_event, parse_stream_record

__all__ = [
    "DeadLetter",
    "DeadLetterQueue",
    "JsonLinesDeadLetterQueue",
    "build_response",
    "parse_stream_event",
    "parse_stream_record",
]
