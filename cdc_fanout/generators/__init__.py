"""Synthetic product and purchase change streams for local runs and tests."""

from cdc_fanout.generators.base import BaseGenerator
from cdc_fanout.generators.entities import ProductGenerator, PurchaseGenerator
from cdc_fanout.generators.stream import TABLE_KEYS, ChangeStreamGenerator, StreamRecordBuilder

__all__ = [
    "BaseGenerator",
    "ChangeStreamGenerator",
    "ProductGenerator",
    "PurchaseGenerator",
    "StreamRecordBuilder",
    "TABLE_KEYS",
]
