"""Pure pipeline stages: decode, classify, project and derive archival keys.

The drivers live in :mod:`cdc_fanout.pipeline.dispatcher` and
:mod:`cdc_fanout.pipeline.coordinator`.
"""

from cdc_fanout.pipeline.classifier import classify
from cdc_fanout.pipeline.clock import MonotonicClock, utc_now
from cdc_fanout.pipeline.decoder import decode_image, decode_operation, decode_value
from cdc_fanout.pipeline.keys import archival_key
from cdc_fanout.pipeline.projector import project_search_text

__all__ = [
    "MonotonicClock",
    "archival_key",
    "classify",
    "decode_image",
    "decode_operation",
    "decode_value",
    "project_search_text",
    "utc_now",
]
