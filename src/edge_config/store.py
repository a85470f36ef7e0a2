"""Read-only access to the resource store.

The compiler never talks to the database directly. It reads a point-in-time
snapshot through a ``ResourceStore``: either the control plane's internal HTTP
API or a YAML/JSON snapshot file.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests
import yaml

from edge_config.models import ExitNode, Hostname, Resource, Site, Target, TargetRow

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """The store could not be read. Compilation must abort."""


# =============================================================================
# Store Interface
# =============================================================================


class ResourceStore(ABC):
    """Abstract base class for resource stores."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the store name for logging."""
        pass

    @abstractmethod
    def get_exit_nodes(self) -> List[ExitNode]:
        """Get all exit nodes, in store order."""
        pass

    @abstractmethod
    def get_target_rows(
        self,
        exit_node_id: Optional[int],
        site_types: Sequence[str],
        allow_raw_resources: bool,
    ) -> List[TargetRow]:
        """Get joined site/target/resource rows visible to an exit node.

        Only enabled targets of enabled resources are returned, on sites whose
        exit node is ``exit_node_id`` or unassigned and whose type is listed in
        ``site_types``. Raw (tcp/udp) resources are included only when
        ``allow_raw_resources`` is set.
        """
        pass

    @abstractmethod
    def get_hostnames(self, resource_ids: Sequence[int]) -> List[Hostname]:
        """Get all hostname records for the given resources."""
        pass

    def snapshot(self) -> ResourceStore:
        """Return a view whose reads all see the same point in time.

        The default is the store itself, each read going to the backing source.
        """
        return self


def row_is_visible(
    row: TargetRow,
    exit_node_id: Optional[int],
    site_types: Sequence[str],
    allow_raw_resources: bool,
) -> bool:
    """Apply the exit node, site type and protocol filters to one row."""
    if not row.target.enabled or not row.resource.enabled:
        return False
    # Unresolved node (None) only matches sites with no exit node.
    if row.site.exit_node_id is not None and row.site.exit_node_id != exit_node_id:
        return False
    if row.site.type is None or row.site.type.value not in site_types:
        return False
    if not row.resource.is_http and not allow_raw_resources:
        return False
    return True


def _parse_records(items: Any, parser, what: str) -> list:
    if not isinstance(items, list):
        raise StoreError(f"Expected a list of {what}, got {type(items).__name__}")
    try:
        return [parser(item) for item in items]
    except (KeyError, TypeError, ValueError) as e:
        raise StoreError(f"Malformed {what} record: {e}") from e


# =============================================================================
# HTTP API Store
# =============================================================================


class ApiResourceStore(ResourceStore):
    """Reads the snapshot from the control plane's internal API."""

    def __init__(self, url: str, token: str = "", timeout_seconds: float = 5.0):
        self._url = url.rstrip("/")
        self._timeout = timeout_seconds
        self._session = requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    @property
    def name(self) -> str:
        return "Control plane API"

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = self._session.get(
                f"{self._url}{path}", params=params, timeout=self._timeout
            )
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read {path} from {self.name}: {e}") from e

    def get_exit_nodes(self) -> List[ExitNode]:
        return _parse_records(self._get("/exit-nodes"), ExitNode.from_json, "exit nodes")

    def get_target_rows(
        self,
        exit_node_id: Optional[int],
        site_types: Sequence[str],
        allow_raw_resources: bool,
    ) -> List[TargetRow]:
        params: Dict[str, Any] = {
            "siteTypes": ",".join(site_types),
            "allowRawResources": "true" if allow_raw_resources else "false",
        }
        if exit_node_id is not None:
            params["exitNodeId"] = exit_node_id
        data = self._get("/traefik/target-rows", params=params)
        return _parse_records(data, TargetRow.from_json, "target rows")

    def get_hostnames(self, resource_ids: Sequence[int]) -> List[Hostname]:
        if not resource_ids:
            return []
        params = {"resourceIds": ",".join(str(i) for i in resource_ids)}
        data = self._get("/resource-hostnames", params=params)
        return _parse_records(data, Hostname.from_json, "hostnames")


# =============================================================================
# Snapshot File Store
# =============================================================================


class SnapshotResourceStore(ResourceStore):
    """Serves reads from a YAML or JSON snapshot of the store's tables.

    The file is re-read on every call so edits are picked up by the next poll.
    ``snapshot()`` parses it once and serves every read of one compilation
    from that copy.
    Expected top-level keys: ``exitNodes``, ``sites``, ``resources``,
    ``targets`` and ``hostnames``, each a list of camelCase records.
    """

    def __init__(self, path: str, data: Optional[Dict[str, Any]] = None):
        self.path = Path(path)
        self._data = data

    @property
    def name(self) -> str:
        return f"Snapshot {self.path}"

    def _load(self) -> Dict[str, Any]:
        if self._data is not None:
            return self._data
        try:
            data = yaml.safe_load(self.path.read_text("utf-8"))
        except (OSError, yaml.YAMLError) as e:
            raise StoreError(f"Failed to load snapshot {self.path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StoreError(f"Snapshot {self.path} is not a mapping")
        return data

    def snapshot(self) -> SnapshotResourceStore:
        return SnapshotResourceStore(str(self.path), data=self._load())

    def _table(self, data: Dict[str, Any], key: str, parser) -> list:
        return _parse_records(data.get(key) or [], parser, key)

    def get_exit_nodes(self) -> List[ExitNode]:
        return self._table(self._load(), "exitNodes", ExitNode.from_json)

    def get_target_rows(
        self,
        exit_node_id: Optional[int],
        site_types: Sequence[str],
        allow_raw_resources: bool,
    ) -> List[TargetRow]:
        data = self._load()
        sites = {s.site_id: s for s in self._table(data, "sites", Site.from_json)}
        resources = {
            r.resource_id: r for r in self._table(data, "resources", Resource.from_json)
        }
        targets = self._table(data, "targets", Target.from_json)

        rows: List[TargetRow] = []
        for target in targets:
            # Inner join: targets without a site or resource never match.
            site = sites.get(target.site_id) if target.site_id is not None else None
            resource = resources.get(target.resource_id)
            if site is None or resource is None:
                logger.debug(f"Target {target.target_id} has no site or resource, skipping")
                continue
            row = TargetRow(resource=resource, target=target, site=site)
            if row_is_visible(row, exit_node_id, site_types, allow_raw_resources):
                rows.append(row)
        return rows

    def get_hostnames(self, resource_ids: Sequence[int]) -> List[Hostname]:
        if not resource_ids:
            return []
        wanted = set(resource_ids)
        hostnames: Iterable[Hostname] = self._table(self._load(), "hostnames", Hostname.from_json)
        return [h for h in hostnames if h.resource_id in wanted]
