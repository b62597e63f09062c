"""IP anonymization used before any analytics row is persisted."""

from __future__ import annotations

import ipaddress


def anonymize_ip(ip: str | None) -> str | None:
    """Zero the host portion of an address.

    IPv4 keeps the first three octets (``203.0.113.42`` -> ``203.0.113.0``).
    IPv6 keeps the first four groups (``2001:db8:85a3:8d3:...`` ->
    ``2001:db8:85a3:8d3::``). Unparseable input is reduced the same way on a
    best-effort textual basis so a raw address never reaches storage.
    """
    if not ip:
        return None
    candidate = ip.strip()
    if not candidate:
        return None

    # X-Forwarded-For chains carry the client first.
    if "," in candidate:
        candidate = candidate.split(",", 1)[0].strip()

    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return _anonymize_textually(candidate)

    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    if isinstance(address, ipaddress.IPv4Address):
        network = ipaddress.ip_network(f"{address}/24", strict=False)
        return str(network.network_address)

    exploded = address.exploded.split(":")
    groups = [format(int(group, 16), "x") for group in exploded[:4]]
    return ":".join(groups) + "::"


def _anonymize_textually(value: str) -> str:
    if ":" in value:
        return ":".join(value.split(":")[:4]) + "::"
    octets = value.split(".")
    return ".".join(octets[:3]) + ".0"
