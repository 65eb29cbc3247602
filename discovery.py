"""Find Antigravity workbench windows on the local CDP ports.

Each Antigravity process exposes its windows on one debugging port. Ports
that nobody listens on are the normal case, so a dead port simply
contributes nothing to the scan.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

import requests

DEFAULT_PORTS = [9000, 9001, 9002, 9003]
SCAN_HOST = '127.0.0.1'


@dataclass(frozen=True)
class Candidate:
    target_id: str
    title: str
    address: str  # webSocketDebuggerUrl
    port: int


def is_workbench(target):
    url = target.get('url') or ''
    title = target.get('title') or ''
    return 'workbench.html' in url or 'workbench' in title


def list_targets(port, timeout=2.0, host=SCAN_HOST):
    """GET /json/list on one port. Any failure yields an empty list."""
    try:
        resp = requests.get(f'http://{host}:{port}/json/list', timeout=timeout)
        targets = resp.json()
    except (requests.RequestException, ValueError):
        return []
    return targets if isinstance(targets, list) else []


def scan(ports, timeout=2.0, host=SCAN_HOST):
    """Probe all ports concurrently and return workbench candidates.

    Order follows the port list, then each port's own listing order.
    """
    ports = list(ports)
    if not ports:
        return []
    with ThreadPoolExecutor(max_workers=len(ports), thread_name_prefix='scan') as pool:
        listings = list(pool.map(lambda p: list_targets(p, timeout, host), ports))

    candidates = []
    for port, targets in zip(ports, listings):
        for t in targets:
            if not isinstance(t, dict) or not is_workbench(t):
                continue
            address = t.get('webSocketDebuggerUrl')
            if not address:
                continue
            candidates.append(Candidate(
                target_id=t.get('id', ''),
                title=t.get('title', ''),
                address=address,
                port=port,
            ))
    return candidates
