"""Compiler settings loaded from the gateway's YAML config file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SITE_TYPES: Tuple[str, ...] = ("newt", "wireguard", "local")


@dataclass(frozen=True)
class DomainOverride:
    """Per-domain certificate settings from the ``domains`` config block."""

    domain_id: str
    base_domain: str = ""
    cert_resolver: str = ""
    prefer_wildcard_cert: bool = False


@dataclass(frozen=True)
class CompilerSettings:
    http_entrypoint: str = "web"
    https_entrypoint: str = "websecure"
    cert_resolver: str = "letsencrypt"
    prefer_wildcard_cert: bool = False
    site_types: Tuple[str, ...] = DEFAULT_SITE_TYPES
    allow_raw_resources: bool = True
    additional_middlewares: Tuple[str, ...] = ()
    exit_node_name: str = ""
    sticky_cookie_name: str = "p_sticky"
    auth_middleware_name: str = "badger"
    internal_hostname: str = "pangolin"
    internal_port: int = 3001
    session_cookie_name: str = "p_session_token"
    resource_access_token_param: str = "p_token"
    resource_session_request_param: str = "p_session_request"
    domains: Dict[str, DomainOverride] = field(default_factory=dict)

    def get_domain(self, domain_id: Optional[str]) -> Optional[DomainOverride]:
        if not domain_id:
            return None
        return self.domains.get(domain_id)

    def cert_policy(self, domain_id: Optional[str]) -> Tuple[str, bool]:
        """Return (cert resolver, prefer wildcard) for a domain id."""
        override = self.get_domain(domain_id)
        if override is None:
            return self.cert_resolver, self.prefer_wildcard_cert
        return override.cert_resolver or self.cert_resolver, override.prefer_wildcard_cert

    @property
    def auth_api_base_url(self) -> str:
        return f"http://{self.internal_hostname}:{self.internal_port}/api/v1"


def _parse_bool(value: Any, *, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    if isinstance(value, dict):
        return value
    if value is not None:
        logger.warning(f"Ignoring config section '{name}': expected a mapping")
    return {}


def _str_list(value: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None:
        return default
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list):
        items = value
    else:
        return default
    return tuple(s for s in (str(i).strip() for i in items) if s)


def _parse_domains(raw: Dict[str, Any]) -> Dict[str, DomainOverride]:
    domains: Dict[str, DomainOverride] = {}
    for domain_id, item in raw.items():
        if not isinstance(item, dict):
            logger.warning(f"Skipping malformed domain entry: {domain_id}")
            continue
        domains[str(domain_id)] = DomainOverride(
            domain_id=str(domain_id),
            base_domain=str(item.get("base_domain") or "").strip().lower(),
            cert_resolver=str(item.get("cert_resolver") or "").strip(),
            prefer_wildcard_cert=_parse_bool(item.get("prefer_wildcard_cert"), default=False),
        )
    return domains


def settings_from_dict(data: Dict[str, Any]) -> CompilerSettings:
    """Build settings from an already parsed config mapping."""
    defaults = CompilerSettings()
    gerbil = _section(data, "gerbil")
    traefik = _section(data, "traefik")
    server = _section(data, "server")

    return CompilerSettings(
        http_entrypoint=str(traefik.get("http_entrypoint") or defaults.http_entrypoint),
        https_entrypoint=str(traefik.get("https_entrypoint") or defaults.https_entrypoint),
        cert_resolver=str(traefik.get("cert_resolver") or defaults.cert_resolver),
        prefer_wildcard_cert=_parse_bool(
            traefik.get("prefer_wildcard_cert"), default=defaults.prefer_wildcard_cert
        ),
        site_types=_str_list(traefik.get("site_types"), defaults.site_types),
        allow_raw_resources=_parse_bool(
            traefik.get("allow_raw_resources"), default=defaults.allow_raw_resources
        ),
        additional_middlewares=_str_list(traefik.get("additional_middlewares"), ()),
        exit_node_name=str(gerbil.get("exit_node_name") or "").strip(),
        sticky_cookie_name=str(traefik.get("sticky_cookie_name") or defaults.sticky_cookie_name),
        internal_hostname=str(server.get("internal_hostname") or defaults.internal_hostname),
        internal_port=int(server.get("internal_port") or defaults.internal_port),
        session_cookie_name=str(
            server.get("session_cookie_name") or defaults.session_cookie_name
        ),
        resource_access_token_param=str(
            server.get("resource_access_token_param") or defaults.resource_access_token_param
        ),
        resource_session_request_param=str(
            server.get("resource_session_request_param")
            or defaults.resource_session_request_param
        ),
        domains=_parse_domains(_section(data, "domains")),
    )


def load_settings(config_path: str, exit_node_name: str = "") -> CompilerSettings:
    """Load settings from a YAML file.

    A missing file yields defaults. A file that cannot be parsed is logged and
    also yields defaults. ``exit_node_name`` overrides ``gerbil.exit_node_name``.
    """
    data: Dict[str, Any] = {}
    path = Path(config_path) if config_path else None

    if path is not None and path.is_file():
        try:
            with open(path, "r") as f:
                loaded = yaml.safe_load(f)
            if isinstance(loaded, dict):
                data = loaded
            elif loaded is not None:
                logger.warning(f"Config file {path} is not a mapping, using defaults")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config from {path}: {e}")
    elif path is not None:
        logger.info(f"Config file {path} not found, using defaults")

    settings = settings_from_dict(data)
    if exit_node_name:
        settings = replace(settings, exit_node_name=exit_node_name)
    return settings
