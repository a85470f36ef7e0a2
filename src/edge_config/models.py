"""Records read from the resource store.

The store speaks camelCase JSON, so every record has a ``from_json``
constructor that accepts the store's field names.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# Enums
# =============================================================================


class Protocol(Enum):
    HTTP = "http"
    TCP = "tcp"
    UDP = "udp"


class HostMode(Enum):
    """How a resource with several hostnames is routed.

    MULTI:    every hostname is matched by the same router.
    REDIRECT: non-primary hostnames redirect permanently to the primary one.
    """

    MULTI = "multi"
    REDIRECT = "redirect"


class PathMatchType(Enum):
    EXACT = "exact"
    PREFIX = "prefix"
    REGEX = "regex"


class SiteType(Enum):
    LOCAL = "local"
    WIREGUARD = "wireguard"
    NEWT = "newt"


# =============================================================================
# Helpers
# =============================================================================


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Expected an integer, got {value!r}")
    return int(value)


def _flag(value: Any, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _enum(enum_cls, value: Any, default):
    if value is None or value == "":
        return default
    return enum_cls(str(value).strip().lower())


def _known_enum(enum_cls, value: Any):
    try:
        return _enum(enum_cls, value, None)
    except ValueError:
        return None


def _headers_text(value: Any) -> Optional[str]:
    # Stored as a JSON string; some stores hand back the decoded list.
    if value is None or value == "":
        return None
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class ExitNode:
    """An edge-proxy instance polling for configuration."""

    exit_node_id: int
    name: str = ""

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> ExitNode:
        return cls(
            exit_node_id=int(payload["exitNodeId"]),
            name=str(payload.get("name") or ""),
        )


@dataclass(frozen=True)
class Site:
    """A connected network location. ``type`` is None for unknown site kinds."""

    site_id: int
    type: Optional[SiteType]
    online: bool = False
    subnet: Optional[str] = None
    exit_node_id: Optional[int] = None

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> Site:
        return cls(
            site_id=int(payload["siteId"]),
            type=_known_enum(SiteType, payload.get("type")),
            online=_flag(payload.get("online")),
            subnet=_opt_str(payload.get("subnet")),
            exit_node_id=_opt_int(payload.get("exitNodeId")),
        )


@dataclass(frozen=True)
class Resource:
    """A published service. Legacy domain fields are kept as read."""

    resource_id: int
    protocol: Protocol = Protocol.HTTP
    enabled: bool = True
    ssl: bool = False
    host_mode: HostMode = HostMode.MULTI
    sticky_session: bool = False
    tls_server_name: Optional[str] = None
    set_host_header: Optional[str] = None
    headers: Optional[str] = None
    proxy_port: Optional[int] = None
    enable_proxy: bool = True
    full_domain: Optional[str] = None
    subdomain: Optional[str] = None
    domain_id: Optional[str] = None

    @property
    def is_http(self) -> bool:
        return self.protocol is Protocol.HTTP

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> Resource:
        return cls(
            resource_id=int(payload["resourceId"]),
            protocol=_enum(Protocol, payload.get("protocol"), Protocol.HTTP),
            enabled=_flag(payload.get("enabled"), default=True),
            ssl=_flag(payload.get("ssl")),
            host_mode=_enum(HostMode, payload.get("hostMode"), HostMode.MULTI),
            sticky_session=_flag(payload.get("stickySession")),
            tls_server_name=_opt_str(payload.get("tlsServerName")),
            set_host_header=_opt_str(payload.get("setHostHeader")),
            headers=_headers_text(payload.get("headers")),
            proxy_port=_opt_int(payload.get("proxyPort")),
            enable_proxy=_flag(payload.get("enableProxy"), default=True),
            full_domain=_opt_str(payload.get("fullDomain")),
            subdomain=_opt_str(payload.get("subdomain")),
            domain_id=_opt_str(payload.get("domainId")),
        )


@dataclass(frozen=True)
class Target:
    target_id: int
    resource_id: int
    site_id: Optional[int] = None
    ip: Optional[str] = None
    port: Optional[int] = None
    internal_port: Optional[int] = None
    method: Optional[str] = None
    enabled: bool = True
    path: Optional[str] = None
    path_match_type: Optional[PathMatchType] = None

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> Target:
        return cls(
            target_id=int(payload["targetId"]),
            resource_id=int(payload["resourceId"]),
            site_id=_opt_int(payload.get("siteId")),
            ip=_opt_str(payload.get("ip")),
            port=_opt_int(payload.get("port")),
            internal_port=_opt_int(payload.get("internalPort")),
            method=_opt_str(payload.get("method")),
            enabled=_flag(payload.get("enabled"), default=True),
            path=_opt_str(payload.get("path")),
            path_match_type=_enum(PathMatchType, payload.get("pathMatchType"), None),
        )


@dataclass(frozen=True)
class Hostname:
    resource_id: int
    full_domain: str
    domain_id: str = ""
    base_domain: str = ""
    subdomain: Optional[str] = None
    primary: bool = False

    @property
    def has_subdomain(self) -> bool:
        if not self.subdomain:
            return False
        return self.full_domain != self.base_domain

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> Hostname:
        return cls(
            resource_id=int(payload["resourceId"]),
            full_domain=str(payload["fullDomain"]).strip().lower(),
            domain_id=str(payload.get("domainId") or ""),
            base_domain=str(payload.get("baseDomain") or "").strip().lower(),
            subdomain=_opt_str(payload.get("subdomain")),
            primary=_flag(payload.get("primary")),
        )


@dataclass(frozen=True)
class TargetRow:
    """One joined site -> target -> resource row."""

    resource: Resource
    target: Target
    site: Site

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> TargetRow:
        return cls(
            resource=Resource.from_json(payload["resource"]),
            target=Target.from_json(payload["target"]),
            site=Site.from_json(payload["site"]),
        )


@dataclass
class RouteGroup:
    """All targets of one resource that share a path and match type."""

    key: str
    resource: Resource
    path: Optional[str] = None
    path_match_type: Optional[PathMatchType] = None
    rows: List[TargetRow] = field(default_factory=list)
    hostnames: List[Hostname] = field(default_factory=list)
