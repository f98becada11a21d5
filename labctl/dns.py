"""
Name resolution helpers for private endpoint checks.
"""

from __future__ import annotations

import logging
import re
import socket
import time
from typing import Callable, List, Sequence

from .utils import CmdError, run


logger = logging.getLogger(__name__)

_ADDRESS = re.compile(r"^\s*Address(?:es)?:\s*(.+)$")


def resolve_host(name: str) -> List[str]:
    """IPv4 answers from the local resolver; empty when the lookup fails."""
    try:
        infos = socket.getaddrinfo(name, None, socket.AF_INET)
    except socket.gaierror:
        return []
    seen: List[str] = []
    for info in infos:
        address = info[4][0]
        if address not in seen:
            seen.append(address)
    return seen


def parse_nslookup(output: str) -> List[str]:
    """Answer addresses from nslookup output (the server's own address is skipped)."""
    addresses: List[str] = []
    in_answer = False
    for line in output.splitlines():
        if line.strip().startswith("Name:"):
            in_answer = True
            continue
        if not in_answer:
            continue
        m = _ADDRESS.match(line)
        if m:
            addresses.extend(a.strip() for a in m.group(1).split(",") if a.strip())
            continue
        # Windows nslookup continues "Addresses:" on indented lines
        candidate = line.strip()
        if addresses and line[:1].isspace() and candidate[:1].isdigit():
            addresses.append(candidate)
    return addresses


def query_resolver(name: str, resolver_ip: str) -> List[str]:
    """Ask a specific DNS server (the private resolver inbound endpoint)."""
    try:
        out = run(["nslookup", name, resolver_ip], echo=False)
    except CmdError as ex:
        logger.debug("nslookup %s @%s failed: %s", name, resolver_ip, ex)
        return []
    return parse_nslookup(out)


def resolve_with_retries(
    name: str,
    accept: Callable[[Sequence[str]], bool],
    attempts: int = 10,
    delay: float = 15.0,
    resolver: Callable[[str], List[str]] = resolve_host,
) -> List[str]:
    """Poll until `accept(addresses)` holds; returns the last answer."""
    addresses: List[str] = []
    for attempt in range(1, attempts + 1):
        addresses = resolver(name)
        if accept(addresses):
            return addresses
        if attempt < attempts:
            logger.info(
                "DNS for %s not private yet (%s); retry %d/%d in %.0fs",
                name,
                ", ".join(addresses) or "no answer",
                attempt,
                attempts,
                delay,
            )
            time.sleep(delay)
    return addresses
