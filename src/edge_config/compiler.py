"""Compile the resource snapshot into Traefik dynamic configuration."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from edge_config.backends import http_servers, raw_servers
from edge_config.config import CompilerSettings
from edge_config.document import TraefikDocument
from edge_config.grouping import (
    load_groups,
    normalize_hostnames,
    primary_hostname,
    resolve_exit_node,
    sanitize_path,
)
from edge_config.models import HostMode, Hostname, PathMatchType, Protocol, Resource, RouteGroup
from edge_config.store import ResourceStore

logger = logging.getLogger(__name__)

REDIRECT_HTTPS_MIDDLEWARE = "redirect-to-https"

DEFAULT_PRIORITY = 100
PATH_PRIORITY = 101
REDIRECT_PRIORITY = 90

PATH_MATCHERS = {
    PathMatchType.EXACT: "Path",
    PathMatchType.PREFIX: "PathPrefix",
    PathMatchType.REGEX: "PathRegexp",
}


# =============================================================================
# Rule and TLS Helpers
# =============================================================================


def wildcard_domain(domain: str) -> str:
    """Wildcard certificate name covering ``domain``.

    Two labels or fewer: ``*.<domain>``. Otherwise the first label is replaced
    by ``*``.
    """
    labels = domain.split(".")
    if len(labels) <= 2:
        return f"*.{domain}"
    return "*." + ".".join(labels[1:])


def host_rule(domains: Sequence[str]) -> str:
    return "Host(" + ", ".join(f"`{d}`" for d in domains) + ")"


def path_rule(path: Optional[str], match_type: Optional[PathMatchType]) -> Optional[str]:
    if not path or match_type is None:
        return None
    return f"{PATH_MATCHERS[match_type]}(`{path}`)"


def parse_headers(resource: Resource) -> Dict[str, str]:
    """Decode the resource's serialized ``[{name, value}]`` header list.

    Anything that does not decode is logged and treated as no headers.
    """
    if not resource.headers:
        return {}
    try:
        items = json.loads(resource.headers)
        if not isinstance(items, list):
            raise ValueError(f"expected a list, got {type(items).__name__}")
    except ValueError as e:
        logger.warning(f"Failed to parse headers for resource {resource.resource_id}: {e}")
        return {}

    headers: Dict[str, str] = {}
    for item in items:
        if not isinstance(item, dict) or not item.get("name"):
            logger.warning(f"Skipping malformed header on resource {resource.resource_id}: {item}")
            continue
        headers[str(item["name"])] = str(item.get("value") or "")
    return headers


# =============================================================================
# HTTP Compiler
# =============================================================================


class HttpCompiler:
    """Routers, services, middlewares and transports for HTTP resources."""

    def __init__(self, settings: CompilerSettings):
        self.settings = settings

    def _entrypoint(self, resource: Resource) -> str:
        if resource.ssl:
            return self.settings.https_entrypoint
        return self.settings.http_entrypoint

    def _tls(
        self, domain: str, has_subdomain: bool, domain_id: Optional[str]
    ) -> Dict[str, Any]:
        cert_resolver, prefer_wildcard = self.settings.cert_policy(domain_id)
        tls: Dict[str, Any] = {"certResolver": cert_resolver}
        if prefer_wildcard:
            main = wildcard_domain(domain) if has_subdomain else domain
            tls["domains"] = [{"main": main}]
        return tls

    def compile(self, group: RouteGroup, document: TraefikDocument) -> bool:
        """Add one HTTP group to the document. Returns False if it was skipped."""
        resource = group.resource
        hostnames = normalize_hostnames(resource, group.hostnames)
        primary = primary_hostname(hostnames)
        if primary is None:
            logger.warning(f"Resource {resource.resource_id} has no domain, skipping")
            return False

        key = group.key
        router_name = f"{key}-router"
        service_name = f"{key}-service"
        domain_id = resource.domain_id or hostnames[0].domain_id
        http = document.http_section()

        routed: List[Hostname] = hostnames
        if resource.host_mode is HostMode.REDIRECT and len(hostnames) > 1:
            for hostname in hostnames:
                if hostname.full_domain != primary.full_domain:
                    self._add_domain_redirect(
                        group, hostname, primary, service_name, domain_id, document
                    )
            routed = [primary]

        rule = host_rule([h.full_domain for h in routed])
        priority = DEFAULT_PRIORITY
        path_match = path_rule(group.path, group.path_match_type)
        if path_match:
            rule = f"{rule} && {path_match}"
            priority = PATH_PRIORITY

        middlewares = [self.settings.auth_middleware_name]
        middlewares.extend(self.settings.additional_middlewares)
        headers_middleware = self._add_headers_middleware(group, document)
        if headers_middleware:
            middlewares.append(headers_middleware)

        router: Dict[str, Any] = {
            "entryPoints": [self._entrypoint(resource)],
            "middlewares": middlewares,
            "service": service_name,
            "rule": rule,
            "priority": priority,
        }
        if resource.ssl:
            router["tls"] = self._tls(primary.full_domain, primary.has_subdomain, domain_id)
        http.routers[router_name] = router

        if resource.ssl:
            http.routers[f"{router_name}-redirect"] = {
                "entryPoints": [self.settings.http_entrypoint],
                "middlewares": [REDIRECT_HTTPS_MIDDLEWARE],
                "service": service_name,
                "rule": rule,
                "priority": priority,
            }

        http.services[service_name] = {"loadBalancer": self._load_balancer(group, document)}
        return True

    def _add_domain_redirect(
        self,
        group: RouteGroup,
        hostname: Hostname,
        primary: Hostname,
        service_name: str,
        domain_id: Optional[str],
        document: TraefikDocument,
    ) -> None:
        """Permanently redirect a non-primary domain to the primary one."""
        resource = group.resource
        http = document.http_section()
        domain = hostname.full_domain
        router_name = f"{group.key}-{sanitize_path(domain)}-redirect"
        middleware_name = f"{router_name}-middleware"
        scheme = "https" if resource.ssl else "http"

        escaped = domain.replace(".", r"\.")
        http.middlewares[middleware_name] = {
            "redirectRegex": {
                "regex": f"^https?://{escaped}(.*)",
                "replacement": f"{scheme}://{primary.full_domain}${{1}}",
                "permanent": True,
            }
        }

        rule = host_rule([domain])
        # A router always needs a service, even one that only redirects.
        router: Dict[str, Any] = {
            "entryPoints": [self._entrypoint(resource)],
            "middlewares": [middleware_name],
            "service": service_name,
            "rule": rule,
            "priority": REDIRECT_PRIORITY,
        }
        if resource.ssl:
            router["tls"] = self._tls(domain, hostname.has_subdomain, domain_id)
        http.routers[router_name] = router

        if resource.ssl:
            http.routers[f"{router_name}-http"] = {
                "entryPoints": [self.settings.http_entrypoint],
                "middlewares": [REDIRECT_HTTPS_MIDDLEWARE],
                "service": service_name,
                "rule": rule,
                "priority": REDIRECT_PRIORITY,
            }

    def _add_headers_middleware(
        self, group: RouteGroup, document: TraefikDocument
    ) -> Optional[str]:
        resource = group.resource
        headers = parse_headers(resource)
        if resource.set_host_header:
            headers["Host"] = resource.set_host_header
        if not headers:
            return None

        name = f"{group.key}-headers-middleware"
        document.http_section().middlewares[name] = {
            "headers": {"customRequestHeaders": headers}
        }
        return name

    def _load_balancer(self, group: RouteGroup, document: TraefikDocument) -> Dict[str, Any]:
        resource = group.resource
        load_balancer: Dict[str, Any] = {"servers": http_servers(group.rows)}

        if resource.sticky_session:
            load_balancer["sticky"] = {
                "cookie": {
                    "name": self.settings.sticky_cookie_name,
                    "secure": resource.ssl,
                    "httpOnly": True,
                }
            }

        if resource.tls_server_name:
            transport_name = f"{group.key}-transport"
            # Traefik does not merge these with the static default transport,
            # so self-signed backends only work with verification off.
            document.http_section().servers_transports[transport_name] = {
                "serverName": resource.tls_server_name,
                "insecureSkipVerify": True,
            }
            load_balancer["serversTransport"] = transport_name

        return load_balancer

    def add_shared_middlewares(self, document: TraefikDocument) -> None:
        """Add the middlewares every HTTP router may reference."""
        if not document.has_http_routers():
            return
        middlewares = document.http_section().middlewares
        middlewares[REDIRECT_HTTPS_MIDDLEWARE] = {"redirectScheme": {"scheme": "https"}}
        auth_name = self.settings.auth_middleware_name
        middlewares[auth_name] = {
            "plugin": {
                auth_name: {
                    "apiBaseUrl": self.settings.auth_api_base_url,
                    "userSessionCookieName": self.settings.session_cookie_name,
                    "accessTokenQueryParam": self.settings.resource_access_token_param,
                    "resourceSessionRequestParam": self.settings.resource_session_request_param,
                }
            }
        }


# =============================================================================
# Raw (TCP/UDP) Compiler
# =============================================================================


class RawCompiler:
    """Routers and services for TCP and UDP resources."""

    def __init__(self, settings: CompilerSettings):
        self.settings = settings

    def compile(self, group: RouteGroup, document: TraefikDocument) -> bool:
        resource = group.resource
        if not self.settings.allow_raw_resources:
            logger.debug(f"Raw resources disabled, skipping resource {resource.resource_id}")
            return False
        if not resource.enable_proxy or not resource.proxy_port:
            logger.debug(f"Resource {resource.resource_id} has no proxy port enabled, skipping")
            return False

        protocol = resource.protocol
        section = document.raw_section(protocol)
        router_name = f"{group.key}-router"
        service_name = f"{group.key}-service"

        router: Dict[str, Any] = {
            "entryPoints": [f"{protocol.value}-{resource.proxy_port}"],
            "service": service_name,
        }
        # TCP has no Host header; match every SNI.
        if protocol is Protocol.TCP:
            router["rule"] = "HostSNI(`*`)"
        section.routers[router_name] = router

        load_balancer: Dict[str, Any] = {"servers": raw_servers(group.rows)}
        if resource.sticky_session:
            load_balancer["sticky"] = {"ipStrategy": {"depth": 0, "sourcePort": True}}
        section.services[service_name] = {"loadBalancer": load_balancer}
        return True


# =============================================================================
# Document Compiler
# =============================================================================


class TraefikConfigCompiler:
    """Builds one Traefik document from one read of the resource store.

    Holds no state between calls. A failing store read raises ``StoreError``
    and no document is produced.
    """

    def __init__(self, store: ResourceStore, settings: CompilerSettings):
        self.store = store
        self.settings = settings
        self.http_compiler = HttpCompiler(settings)
        self.raw_compiler = RawCompiler(settings)

    def build(
        self, exit_node_id: Optional[int], store: Optional[ResourceStore] = None
    ) -> TraefikDocument:
        document = TraefikDocument()
        groups = load_groups(store or self.store, exit_node_id, self.settings)

        skipped = 0
        for group in groups:
            if not group.resource.enabled:
                continue
            if group.resource.is_http:
                compiled = self.http_compiler.compile(group, document)
            else:
                compiled = self.raw_compiler.compile(group, document)
            if not compiled:
                skipped += 1

        self.http_compiler.add_shared_middlewares(document)
        logger.info(
            f"Compiled {len(groups)} route group(s) into {document.count_routers()} router(s)"
            + (f" ({skipped} skipped)" if skipped else "")
        )
        return document

    def compile(self) -> Dict[str, Any]:
        store = self.store.snapshot()
        exit_node_id = resolve_exit_node(store, self.settings.exit_node_name)
        return self.build(exit_node_id, store).to_dict()
