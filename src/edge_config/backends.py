"""Backend selection for a route group.

Targets are filtered by availability and connectivity, turned into the
address form Traefik expects, and deduplicated by that address.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import Dict, List, Optional, Sequence

from edge_config.models import SiteType, TargetRow

logger = logging.getLogger(__name__)


def subnet_host(subnet: str) -> Optional[str]:
    """Return the address a newt site is reached on inside its subnet.

    ``10.0.0.1/24`` keeps its own address. A bare network address such as
    ``10.0.0.0/24`` resolves to the first host, ``10.0.0.1``.
    """
    try:
        interface = ipaddress.ip_interface(subnet.strip())
    except ValueError:
        return None

    network = interface.network
    address = interface.ip
    if address == network.network_address and network.num_addresses > 2:
        address = network.network_address + 1
    if address.version == 6:
        return f"[{address}]"
    return str(address)


def _has_connectivity(row: TargetRow, http: bool) -> bool:
    target = row.target
    site_type = row.site.type

    if http and not target.method:
        return False
    if site_type in (SiteType.LOCAL, SiteType.WIREGUARD):
        return bool(target.ip and target.port)
    if site_type is SiteType.NEWT:
        return bool(target.internal_port and row.site.subnet)
    return False


def backend_address(row: TargetRow, http: bool) -> Optional[str]:
    """Build the backend address for one target, or None if it has none.

    HTTP groups get ``method://host:port`` URLs, raw groups bare ``host:port``.
    """
    if not _has_connectivity(row, http):
        return None

    target = row.target
    if row.site.type is SiteType.NEWT:
        host = subnet_host(row.site.subnet or "")
        if host is None:
            logger.warning(
                f"Site {row.site.site_id} has an invalid subnet '{row.site.subnet}', "
                f"skipping target {target.target_id}"
            )
            return None
        port = target.internal_port
    else:
        host = target.ip
        port = target.port

    if http:
        return f"{target.method}://{host}:{port}"
    return f"{host}:{port}"


def select_backends(rows: Sequence[TargetRow], http: bool) -> List[str]:
    """Compute the backend pool for a group.

    While at least one site is online, targets on offline sites are dropped.
    When every site is offline all of them stay, so the pool is never emptied
    by the liveness check alone.
    """
    any_site_online = any(row.site.online for row in rows)

    addresses: List[str] = []
    seen = set()
    for row in rows:
        if not row.target.enabled:
            continue
        if any_site_online and not row.site.online:
            logger.debug(
                f"Target {row.target.target_id} on offline site {row.site.site_id} excluded"
            )
            continue
        address = backend_address(row, http)
        if address is None:
            logger.debug(f"Target {row.target.target_id} lacks connectivity details, skipping")
            continue
        if address in seen:
            continue
        seen.add(address)
        addresses.append(address)
    return addresses


def http_servers(rows: Sequence[TargetRow]) -> List[Dict[str, str]]:
    return [{"url": url} for url in select_backends(rows, http=True)]


def raw_servers(rows: Sequence[TargetRow]) -> List[Dict[str, str]]:
    return [{"address": address} for address in select_backends(rows, http=False)]
