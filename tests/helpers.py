"""Builders and an in-memory store shared by the compiler tests."""

from typing import List, Optional, Sequence

from edge_config.models import (
    ExitNode,
    HostMode,
    Hostname,
    PathMatchType,
    Protocol,
    Resource,
    Site,
    SiteType,
    Target,
    TargetRow,
)
from edge_config.store import ResourceStore, StoreError, row_is_visible


class MemoryStore(ResourceStore):
    """In-memory store with call tracking."""

    def __init__(
        self,
        rows: Sequence[TargetRow] = (),
        hostnames: Sequence[Hostname] = (),
        exit_nodes: Sequence[ExitNode] = (ExitNode(exit_node_id=1, name="edge-1"),),
        fail: bool = False,
    ):
        self.rows = list(rows)
        self.hostnames = list(hostnames)
        self.exit_nodes = list(exit_nodes)
        self.fail = fail
        self.row_calls: List[tuple] = []
        self.hostname_calls: List[List[int]] = []
        self.snapshot_calls = 0

    @property
    def name(self) -> str:
        return "Memory"

    def get_exit_nodes(self) -> List[ExitNode]:
        return list(self.exit_nodes)

    def snapshot(self) -> "MemoryStore":
        self.snapshot_calls += 1
        return self

    def get_target_rows(self, exit_node_id, site_types, allow_raw_resources) -> List[TargetRow]:
        self.row_calls.append((exit_node_id, list(site_types), allow_raw_resources))
        if self.fail:
            raise StoreError("store unreachable")
        return [
            r for r in self.rows if row_is_visible(r, exit_node_id, site_types, allow_raw_resources)
        ]

    def get_hostnames(self, resource_ids) -> List[Hostname]:
        self.hostname_calls.append(list(resource_ids))
        return [h for h in self.hostnames if h.resource_id in set(resource_ids)]


def make_resource(
    resource_id: int = 1,
    *,
    protocol: Protocol = Protocol.HTTP,
    full_domain: Optional[str] = "app.example.com",
    subdomain: Optional[str] = "app",
    domain_id: Optional[str] = "domain1",
    ssl: bool = False,
    host_mode: HostMode = HostMode.MULTI,
    **kwargs,
) -> Resource:
    return Resource(
        resource_id=resource_id,
        protocol=protocol,
        full_domain=full_domain,
        subdomain=subdomain,
        domain_id=domain_id,
        ssl=ssl,
        host_mode=host_mode,
        **kwargs,
    )


def make_site(
    site_id: int = 1,
    *,
    type: SiteType = SiteType.LOCAL,
    online: bool = True,
    subnet: Optional[str] = None,
    exit_node_id: Optional[int] = 1,
) -> Site:
    return Site(
        site_id=site_id, type=type, online=online, subnet=subnet, exit_node_id=exit_node_id
    )


def make_row(
    resource: Resource,
    site: Site,
    target_id: int = 1,
    *,
    ip: Optional[str] = "192.168.1.10",
    port: Optional[int] = 8080,
    internal_port: Optional[int] = None,
    method: Optional[str] = "http",
    enabled: bool = True,
    path: Optional[str] = None,
    path_match_type: Optional[PathMatchType] = None,
) -> TargetRow:
    target = Target(
        target_id=target_id,
        resource_id=resource.resource_id,
        site_id=site.site_id,
        ip=ip,
        port=port,
        internal_port=internal_port,
        method=method,
        enabled=enabled,
        path=path,
        path_match_type=path_match_type,
    )
    return TargetRow(resource=resource, target=target, site=site)


def make_hostname(
    resource_id: int,
    full_domain: str,
    *,
    primary: bool = False,
    subdomain: Optional[str] = None,
    base_domain: str = "example.com",
    domain_id: str = "domain1",
) -> Hostname:
    if subdomain is None and full_domain != base_domain:
        subdomain = full_domain[: -(len(base_domain) + 1)]
    return Hostname(
        resource_id=resource_id,
        full_domain=full_domain,
        domain_id=domain_id,
        base_domain=base_domain,
        subdomain=subdomain,
        primary=primary,
    )
