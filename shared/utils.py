from __future__ import annotations
import re

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================
"""
Helpers the config layer calls to decide whether connection options are
usable before any socket is opened.
"""

_SERVICE_NAME_RE = re.compile(r'^[A-Za-z][A-Za-z0-9-]*$')

def is_port(s: str) -> bool:
    """
    Accepts a numeric port '1'..'65535' or a service name such as 'domain'.

    getaddrinfo resolves service names, so they are let through here and
    any unknown name surfaces later as a resolution failure.
    """
    if s.isdigit():
        return 0 < int(s) <= 65535
    return bool(_SERVICE_NAME_RE.fullmatch(s))

def format_hostport(host: str, port: str) -> str:
    """
    Formats 'host:port' for log lines, bracketing IPv6 literals.

    Examples: "localhost:9999", "[::1]:9999"
    """
    if ':' in host and not host.startswith('['):
        return f"[{host}]:{port}"
    return f"{host}:{port}"
