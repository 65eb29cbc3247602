"""
PocketCascade — Your Antigravity agent chats, in your pocket.

Mirrors every Antigravity cascade (agent chat panel) to a phone browser:
  Antigravity → phone:  chat markup is polled and pushed as it changes
  phone → Antigravity:  messages and header actions are typed/clicked in

Connects to Antigravity via Chrome DevTools Protocol (CDP). Start
Antigravity with --remote-debugging-port=9000 (or 9001-9003).

Usage: python pocket_cascade.py
"""

import sys, io
if sys.platform == 'win32' and hasattr(sys.stdout, 'buffer'):
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

# Standard library
import os
import socket
from pathlib import Path

# Sibling modules
from api_server import create_app
from cascade_monitor import CascadeMonitor, DISCOVERY_INTERVAL, POLL_INTERVAL
from cdp_session import ts_print
from discovery import DEFAULT_PORTS

# Third-party
from dotenv import load_dotenv

print = ts_print


# ── Config ───────────────────────────────────────────────────────────────────

load_dotenv(Path(__file__).parent / '.env')


def env_number(name, default, cast=float):
    raw = os.environ.get(name, '').strip()
    if not raw:
        return default
    try:
        value = cast(raw)
    except ValueError:
        print(f"WARNING: {name}={raw!r} is not a number, using {default}")
        return default
    if value <= 0:
        print(f"WARNING: {name}={raw!r} must be positive, using {default}")
        return default
    return value


def env_ports(name, default):
    """Comma-separated port list, e.g. CDP_PORTS=9000,9001."""
    raw = os.environ.get(name, '').strip()
    if not raw:
        return list(default)
    try:
        ports = [int(p) for p in raw.split(',') if p.strip()]
    except ValueError:
        print(f"WARNING: {name}={raw!r} is not a port list, using {default}")
        return list(default)
    return ports or list(default)


def load_config():
    return {
        'port': env_number('PORT', 3001, int),
        'cdp_ports': env_ports('CDP_PORTS', DEFAULT_PORTS),
        'discovery_interval': env_number('DISCOVERY_INTERVAL', DISCOVERY_INTERVAL),
        'poll_interval': env_number('POLL_INTERVAL', POLL_INTERVAL),
        'scan_timeout': env_number('SCAN_TIMEOUT', 2.0),
        'call_timeout': env_number('CDP_CALL_TIMEOUT', 10.0),
        'settle': env_number('CONTEXT_SETTLE', 0.5),
    }


def route_ip():
    """Address of the interface that carries the default route. No packet is sent."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(('8.8.8.8', 80))
        return s.getsockname()[0]
    except OSError:
        return None
    finally:
        s.close()


def local_ips():
    """Non-loopback IPv4 addresses of this machine, default-route one first."""
    candidates = [route_ip()]
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except socket.gaierror:
        infos = []
    candidates += [info[4][0] for info in infos]
    ips = []
    for ip in candidates:
        if ip and not ip.startswith('127.') and ip not in ips:
            ips.append(ip)
    return ips


# ── Main ─────────────────────────────────────────────────────────────────────

def main():
    config = load_config()
    monitor = CascadeMonitor(
        ports=config['cdp_ports'],
        discovery_interval=config['discovery_interval'],
        poll_interval=config['poll_interval'],
        scan_timeout=config['scan_timeout'],
        call_timeout=config['call_timeout'],
        settle=config['settle'],
    )
    app = create_app(monitor)

    print(f"[cdp] Scanning ports {config['cdp_ports']}")
    print(f"Backend API running on port {config['port']}")
    ips = local_ips()
    if ips:
        print(f"Local Network: http://{ips[0]}:{config['port']}")
        if len(ips) > 1:
            print(f"   (Other IPs: {', '.join(ips[1:])})")
    print("Press Ctrl+C to stop.\n")

    monitor.start()
    try:
        app.run(host='0.0.0.0', port=config['port'], threaded=True, use_reloader=False)
    except KeyboardInterrupt:
        pass
    finally:
        print("\nStopping...")
        monitor.stop()
        print("Done.")


if __name__ == '__main__':
    main()
