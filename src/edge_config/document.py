"""Traefik dynamic configuration document.

Each protocol gets its own section and each section only appears in the
rendered document once something has been put into it. Entries themselves are
plain mappings in Traefik's own vocabulary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from edge_config.models import Protocol

Entry = Dict[str, Any]


@dataclass
class RawSection:
    """Routers and services for a ``tcp`` or ``udp`` section."""

    routers: Dict[str, Entry] = field(default_factory=dict)
    services: Dict[str, Entry] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.routers:
            out["routers"] = dict(self.routers)
        if self.services:
            out["services"] = dict(self.services)
        return out


@dataclass
class HttpSection(RawSection):
    middlewares: Dict[str, Entry] = field(default_factory=dict)
    servers_transports: Dict[str, Entry] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        if self.middlewares:
            out["middlewares"] = dict(self.middlewares)
        if self.servers_transports:
            out["serversTransports"] = dict(self.servers_transports)
        return out


@dataclass
class TraefikDocument:
    http: Optional[HttpSection] = None
    tcp: Optional[RawSection] = None
    udp: Optional[RawSection] = None

    def http_section(self) -> HttpSection:
        if self.http is None:
            self.http = HttpSection()
        return self.http

    def raw_section(self, protocol: Protocol) -> RawSection:
        if protocol is Protocol.TCP:
            if self.tcp is None:
                self.tcp = RawSection()
            return self.tcp
        if protocol is Protocol.UDP:
            if self.udp is None:
                self.udp = RawSection()
            return self.udp
        raise ValueError(f"Not a raw protocol: {protocol.value}")

    def has_http_routers(self) -> bool:
        return self.http is not None and bool(self.http.routers)

    def count_routers(self) -> int:
        return sum(len(s.routers) for s in (self.http, self.tcp, self.udp) if s is not None)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name, section in (("http", self.http), ("tcp", self.tcp), ("udp", self.udp)):
            if section is None:
                continue
            rendered = section.to_dict()
            if rendered:
                out[name] = rendered
        return out
