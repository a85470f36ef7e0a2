"""Snapshot reads and route grouping.

A resource becomes one route group per distinct (path, match type) among its
targets. Hostnames are read in one batch and attached to every group of their
resource, then normalized so that legacy single-domain resources look the same
as resources with hostname records.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence

from edge_config.config import CompilerSettings
from edge_config.models import Hostname, PathMatchType, Resource, RouteGroup, TargetRow
from edge_config.store import ResourceStore

logger = logging.getLogger(__name__)

MAX_PATH_KEY_LENGTH = 50
NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


# =============================================================================
# Exit Node Resolution
# =============================================================================


def resolve_exit_node(store: ResourceStore, exit_node_name: str = "") -> Optional[int]:
    """Resolve the exit node this document is compiled for.

    Uses the node named ``exit_node_name`` when set, else the first node the
    store returns. Returns None when nothing matches; the caller then only sees
    sites without an exit node.
    """
    nodes = store.get_exit_nodes()

    if exit_node_name:
        for node in nodes:
            if node.name == exit_node_name:
                return node.exit_node_id
        logger.warning(
            f"Exit node '{exit_node_name}' not found, only sites without an exit node will be routed"
        )
        return None

    if not nodes:
        logger.warning("No exit nodes available, only sites without an exit node will be routed")
        return None
    return nodes[0].exit_node_id


# =============================================================================
# Grouping
# =============================================================================


def sanitize_path(path: Optional[str]) -> str:
    """Truncate to 50 characters and drop everything but letters and digits."""
    if not path:
        return ""
    return NON_ALNUM_RE.sub("", path[:MAX_PATH_KEY_LENGTH])


def group_key(
    resource_id: int, path: Optional[str], path_match_type: Optional[PathMatchType]
) -> str:
    match_type = path_match_type.value if path_match_type else ""
    path_key = "-".join(p for p in (sanitize_path(path), match_type) if p)
    return "-".join(p for p in (str(resource_id), path_key) if p)


def group_rows(rows: Sequence[TargetRow], hostnames: Sequence[Hostname]) -> List[RouteGroup]:
    """Group joined rows by resource, path and match type, in row order."""
    hostnames_by_resource: Dict[int, List[Hostname]] = {}
    for hostname in hostnames:
        hostnames_by_resource.setdefault(hostname.resource_id, []).append(hostname)

    groups: Dict[str, RouteGroup] = {}
    for row in rows:
        resource = row.resource
        key = group_key(resource.resource_id, row.target.path, row.target.path_match_type)
        group = groups.get(key)
        if group is None:
            # Every target in a group shares the path, so the first one speaks for all.
            group = RouteGroup(
                key=key,
                resource=resource,
                path=row.target.path,
                path_match_type=row.target.path_match_type,
                hostnames=list(hostnames_by_resource.get(resource.resource_id, [])),
            )
            groups[key] = group
        group.rows.append(row)
    return list(groups.values())


def load_groups(
    store: ResourceStore, exit_node_id: Optional[int], settings: CompilerSettings
) -> List[RouteGroup]:
    """Read the snapshot (rows, then hostnames) and group it."""
    rows = store.get_target_rows(
        exit_node_id, list(settings.site_types), settings.allow_raw_resources
    )
    resource_ids = sorted({row.resource.resource_id for row in rows})
    hostnames = store.get_hostnames(resource_ids) if resource_ids else []
    logger.debug(
        f"Read {len(rows)} target row(s) and {len(hostnames)} hostname(s) "
        f"for {len(resource_ids)} resource(s)"
    )
    return group_rows(rows, hostnames)


# =============================================================================
# Hostname Normalization
# =============================================================================


def _legacy_hostname(resource: Resource) -> Optional[Hostname]:
    if not resource.full_domain:
        return None
    full_domain = resource.full_domain.lower()
    base_domain = full_domain
    if resource.subdomain and full_domain.startswith(f"{resource.subdomain.lower()}."):
        base_domain = full_domain[len(resource.subdomain) + 1 :]
    return Hostname(
        resource_id=resource.resource_id,
        full_domain=full_domain,
        domain_id=resource.domain_id or "",
        base_domain=base_domain,
        subdomain=resource.subdomain,
        primary=True,
    )


def normalize_hostnames(resource: Resource, hostnames: Sequence[Hostname]) -> List[Hostname]:
    """Return the resource's hostnames as one list, legacy field included.

    Hostname records win. Without any, the legacy ``fullDomain`` becomes the
    single primary entry. Duplicate full domains keep their first record.
    """
    unique: Dict[str, Hostname] = {}
    for hostname in hostnames:
        if hostname.full_domain and hostname.full_domain not in unique:
            unique[hostname.full_domain] = hostname
    if unique:
        return list(unique.values())

    legacy = _legacy_hostname(resource)
    return [legacy] if legacy else []


def primary_hostname(hostnames: Sequence[Hostname]) -> Optional[Hostname]:
    for hostname in hostnames:
        if hostname.primary:
            return hostname
    return hostnames[0] if hostnames else None
