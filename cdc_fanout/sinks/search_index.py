"""Search index sink backed by per-tenant PostgreSQL full-text tables."""

from __future__ import annotations

import hashlib
import logging
import threading
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Iterator, Mapping, Protocol

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb

from cdc_fanout.exceptions import ProvisioningError, SinkError
from cdc_fanout.models.enums import Operation
from cdc_fanout.models.events import DomainEvent, SearchIndexEntry
from cdc_fanout.pipeline.projector import project_search_text
from cdc_fanout.sinks.base import Sink
from cdc_fanout.sinks.serialization import serialize_value, to_dict

logger = logging.getLogger(__name__)

# Column name to DDL; the order is the table's column order
SEARCH_INDEX_SCHEMA: dict[str, str] = {
    "entity_id": "text PRIMARY KEY",
    "tenant_id": "text NOT NULL",
    "entity_type": "text NOT NULL",
    "search_text": "text NOT NULL",
    "search_vector": "tsvector GENERATED ALWAYS AS (to_tsvector('simple', search_text)) STORED",
    "data": "jsonb NOT NULL",
    "updated_at": "timestamptz NOT NULL",
    "expires_at": "timestamptz",
}

MAX_IDENTIFIER_LENGTH = 63


class SearchIndexBackend(Protocol):
    """Boundary of the text-search engine."""

    def ensure_scope_exists(self, scope: str, schema: Mapping[str, str]) -> None: ...

    def upsert(self, scope: str, entity_id: str, document: dict[str, Any]) -> None: ...

    def delete(self, scope: str, entity_id: str) -> None: ...


class SearchIndexSink(Sink):
    """Keep one current-state search entry per (tenant, entity).

    CREATE and UPDATE upsert a freshly projected entry; DELETE removes it and
    treats a missing entry as success. Each scope is provisioned before its
    first write.

    Parameters
    ----------
    backend : SearchIndexBackend
        Search engine adapter.
    namespace : str
        Prefix for scope names (deployment identifier).
    ttl_days : int | None
        Retention horizon written with each entry; ``None`` for no expiry.
    """

    name = "search_index"

    def __init__(
        self,
        backend: SearchIndexBackend,
        namespace: str = "search-",
        ttl_days: int | None = 365,
    ) -> None:
        self.backend = backend
        self.namespace = namespace
        self.ttl_days = ttl_days
        self._provisioned: set[str] = set()
        self._provision_lock = threading.Lock()

    def scope_for(self, event: DomainEvent) -> str:
        """Per-tenant, per-kind namespace, e.g. ``search-products-t1``."""
        return f"{self.namespace}{event.entity_kind.collection}-{event.tenant_id}"

    def build_entry(self, event: DomainEvent) -> SearchIndexEntry:
        """Derive the index entry for a CREATE or UPDATE event."""
        ttl = None
        if self.ttl_days is not None:
            ttl = int((event.occurred_at + timedelta(days=self.ttl_days)).timestamp())
        return SearchIndexEntry(
            tenant_id=event.tenant_id,
            entity_id=event.entity_id,
            entity_type=event.entity_kind.value,
            search_text=project_search_text(event.entity_kind, event.payload),
            data=dict(event.payload or {}),
            updated_at=event.occurred_at,
            ttl=ttl,
        )

    def write(self, event: DomainEvent) -> None:
        scope = self.scope_for(event)
        self._ensure_provisioned(scope)

        if event.operation is Operation.DELETE:
            self.backend.delete(scope, event.entity_id)
            logger.debug("Removed %s from %s", event.entity_id, scope)
        else:
            self.backend.upsert(scope, event.entity_id, to_dict(self.build_entry(event)))
            logger.debug("Indexed %s in %s", event.entity_id, scope)

    def _ensure_provisioned(self, scope: str) -> None:
        if scope in self._provisioned:
            return
        with self._provision_lock:
            if scope in self._provisioned:
                return
            self.backend.ensure_scope_exists(scope, SEARCH_INDEX_SCHEMA)
            self._provisioned.add(scope)
            logger.info("Search index scope ready: %s", scope)

    def close(self) -> None:
        close = getattr(self.backend, "close", None)
        if close is not None:
            close()


class PostgresSearchBackend:
    """Search scopes as PostgreSQL tables with a generated ``tsvector`` column.

    Parameters
    ----------
    conninfo : str
        libpq connection string.
    statement_timeout_ms : int
        Server-side statement timeout applied to the session.
    connect_timeout : int
        Seconds libpq waits to establish a connection. libpq treats values
        below 2 as 2.
    connection : psycopg.Connection | None
        Pre-built connection (mainly for tests).
    """

    def __init__(
        self,
        conninfo: str,
        statement_timeout_ms: int = 5000,
        connect_timeout: int = 3,
        connection: psycopg.Connection | None = None,
    ) -> None:
        self.conninfo = conninfo
        self.statement_timeout_ms = statement_timeout_ms
        self.connect_timeout = max(2, connect_timeout)
        self._connection = connection
        self._connect_lock = threading.Lock()

    @staticmethod
    def table_name(scope: str) -> str:
        """Fit ``scope`` into a PostgreSQL identifier without truncation clashes."""
        encoded = scope.encode("utf-8")
        if len(encoded) <= MAX_IDENTIFIER_LENGTH:
            return scope
        digest = hashlib.sha1(encoded).hexdigest()[:12]
        # Identifier limits count bytes; drop any character split by the cut
        head = encoded[: MAX_IDENTIFIER_LENGTH - 13].decode("utf-8", "ignore")
        return f"{head}_{digest}"

    def ensure_scope_exists(self, scope: str, schema: Mapping[str, str]) -> None:
        columns = sql.SQL(", ").join(
            sql.SQL("{} {}").format(sql.Identifier(column), sql.SQL(ddl)) for column, ddl in schema.items()
        )
        statement = sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(
            sql.Identifier(self.table_name(scope)), columns
        )
        try:
            with self._translate_errors(f"provision {scope}", ProvisioningError):
                self._connect().execute(statement)
        except ProvisioningError as exc:
            # Two first writers can race past IF NOT EXISTS; the loser's
            # duplicate-object error means the table is there.
            if isinstance(exc.__cause__, (psycopg.errors.DuplicateTable, psycopg.errors.UniqueViolation)):
                logger.debug("Scope %s created concurrently", scope)
                return
            raise

    def upsert(self, scope: str, entity_id: str, document: dict[str, Any]) -> None:
        statement = sql.SQL(
            "INSERT INTO {} (entity_id, tenant_id, entity_type, search_text, data, updated_at, expires_at) "
            "VALUES (%s, %s, %s, %s, %s, %s, to_timestamp(%s)) "
            "ON CONFLICT (entity_id) DO UPDATE SET "
            "tenant_id = EXCLUDED.tenant_id, entity_type = EXCLUDED.entity_type, "
            "search_text = EXCLUDED.search_text, data = EXCLUDED.data, "
            "updated_at = EXCLUDED.updated_at, expires_at = EXCLUDED.expires_at"
        ).format(sql.Identifier(self.table_name(scope)))
        params = (
            entity_id,
            document["tenant_id"],
            document["entity_type"],
            document["search_text"],
            Jsonb(serialize_value(document["data"])),
            document["updated_at"],
            document.get("ttl"),
        )
        with self._translate_errors(f"upsert {entity_id} into {scope}"):
            self._connect().execute(statement, params)

    def delete(self, scope: str, entity_id: str) -> None:
        statement = sql.SQL("DELETE FROM {} WHERE entity_id = %s").format(
            sql.Identifier(self.table_name(scope))
        )
        with self._translate_errors(f"delete {entity_id} from {scope}"):
            self._connect().execute(statement, (entity_id,))

    def close(self) -> None:
        if self._connection is not None and not self._connection.closed:
            self._connection.close()

    def _connect(self) -> psycopg.Connection:
        with self._connect_lock:
            if self._connection is None or self._connection.closed:
                self._connection = psycopg.connect(
                    self.conninfo,
                    autocommit=True,
                    connect_timeout=self.connect_timeout,
                    options=f"-c statement_timeout={self.statement_timeout_ms}",
                )
            return self._connection

    @contextmanager
    def _translate_errors(self, action: str, error_type: type[SinkError] = SinkError) -> Iterator[None]:
        try:
            yield
        except psycopg.OperationalError as exc:
            # Broken connections are rebuilt on the next call
            self.close()
            raise error_type(f"Search index unavailable during {action}: {exc}", retryable=True) from exc
        except psycopg.Error as exc:
            raise error_type(f"Search index rejected {action}: {exc}", retryable=False) from exc
