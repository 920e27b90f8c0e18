from __future__ import annotations
import ipaddress
import re
from typing import Any, Optional

# Sentinel reported when a client registers without a usable auxiliary address
UNKNOWN_ADDRESS = "N/A"

# ========================================
#           INPUT NORMALIZATION HELPERS
# ========================================
"""
Helpers shared by the router, the HTTP surface and the client. None of them
raise: callers get a normalized value or a boolean verdict.
"""

_HOSTNAME_RE = re.compile(r'^(?=.{1,253}$)[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*$')

def normalize_aux_address(value: Any) -> str:
    """
    Map the optional ``tailscaleIP`` of a register envelope to what gets stored.

    Absent, empty, the literal string "null", or anything that is not a string
    becomes UNKNOWN_ADDRESS. Any other string is kept as given.
    """
    if not isinstance(value, str) or not value or value == "null":
        return UNKNOWN_ADDRESS
    return value

def normalize_client_ip(forwarded_for: Optional[str], peer_address: Optional[str]) -> str:
    """
    Apparent client address for the /get-ip route.

    - Prefer the first X-Forwarded-For entry, else the socket peer.
    - Strip the IPv4-mapped IPv6 prefix "::ffff:".
    """
    client_ip = forwarded_for or peer_address or ""
    if "," in client_ip:
        client_ip = client_ip.split(",")[0].strip()
    if client_ip.startswith("::ffff:"):
        client_ip = client_ip[len("::ffff:"):]
    return client_ip

def is_ip_address(s: str) -> bool:
    try:
        ipaddress.ip_address(s)
        return True
    except ValueError:
        return False

def is_probe_target(s: str) -> bool:
    """
    True if ``s`` is safe to hand to the ping command as a single argument:
    an IP literal or a DNS hostname. Rejects anything starting with '-' so a
    value can never be read as a ping option.
    """
    if not s or s.startswith("-"):
        return False
    return is_ip_address(s) or bool(_HOSTNAME_RE.fullmatch(s))
