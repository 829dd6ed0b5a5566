"""In-process backends for local replays and tests."""

import copy
import threading
from typing import Any, Mapping

from cdc_fanout.exceptions import SinkError


class InMemorySearchBackend:
    """Search scopes held as dictionaries of documents."""

    def __init__(self) -> None:
        self.scopes: dict[str, dict[str, dict[str, Any]]] = {}
        self.schemas: dict[str, dict[str, str]] = {}
        self.provision_calls = 0
        self._lock = threading.Lock()

    def ensure_scope_exists(self, scope: str, schema: Mapping[str, str]) -> None:
        with self._lock:
            self.provision_calls += 1
            self.scopes.setdefault(scope, {})
            self.schemas.setdefault(scope, dict(schema))

    def upsert(self, scope: str, entity_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            if scope not in self.scopes:
                raise SinkError(f"Search scope {scope} does not exist", retryable=False)
            self.scopes[scope][entity_id] = copy.deepcopy(document)

    def delete(self, scope: str, entity_id: str) -> None:
        with self._lock:
            self.scopes.get(scope, {}).pop(entity_id, None)

    def get(self, scope: str, entity_id: str) -> dict[str, Any] | None:
        return self.scopes.get(scope, {}).get(entity_id)


class InMemoryObjectStore:
    """Write-once object map."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self._lock = threading.Lock()

    def put_once(self, key: str, body: bytes, content_type: str) -> None:
        with self._lock:
            if key in self.objects:
                raise SinkError(f"Archival key already exists: {key}", retryable=False)
            self.objects[key] = body
            self.content_types[key] = content_type

    def keys_with_prefix(self, prefix: str) -> list[str]:
        return sorted(k for k in self.objects if k.startswith(prefix))


class InMemoryLookupTable:
    """Lookup items keyed by (tenant_id, entity_id)."""

    def __init__(self) -> None:
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, item: dict[str, Any]) -> None:
        with self._lock:
            self.items[(item["tenant_id"], item["entity_id"])] = copy.deepcopy(item)

    def delete(self, tenant_id: str, entity_id: str) -> None:
        with self._lock:
            self.items.pop((tenant_id, entity_id), None)
