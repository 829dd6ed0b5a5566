"""Sink adapters that receive derived writes for each domain event."""

from cdc_fanout.sinks.archive import ArchivalSink, S3ObjectStore
from cdc_fanout.sinks.base import Sink
from cdc_fanout.sinks.lookup_table import DynamoLookupTable, SecondaryIndexSink
from cdc_fanout.sinks.memory import InMemoryLookupTable, InMemoryObjectStore, InMemorySearchBackend
from cdc_fanout.sinks.search_index import PostgresSearchBackend, SearchIndexSink

__all__ = [
    "ArchivalSink",
    "DynamoLookupTable",
    "InMemoryLookupTable",
    "InMemoryObjectStore",
    "InMemorySearchBackend",
    "PostgresSearchBackend",
    "S3ObjectStore",
    "SearchIndexSink",
    "SecondaryIndexSink",
    "Sink",
]
