import threading

from cascade_registry import CascadeRegistry, stable_id
from fakes import FakeEnvironment, FakePage
from snapshot_poller import SnapshotPoller, fingerprint

ADDR = 'ws://127.0.0.1:9000/devtools/page/AAAA'


def _setup(pages):
    env = FakeEnvironment()
    env.add(ADDR, pages=pages)
    registry = CascadeRegistry(ports=[9000], scanner=env.scanner, opener=env.opener)
    registry.discover()
    notified = []
    poller = SnapshotPoller(registry, on_change=notified.append)
    return registry, poller, notified


def test_fingerprint_is_deterministic():
    assert fingerprint('<p>Hello</p>') == fingerprint('<p>Hello</p>')
    assert fingerprint('<p>Hello</p>') != fingerprint('<p>Hello, world</p>')


def test_changed_content_notifies_once():
    page = FakePage(html='<div id="cascade">Hello</div>')
    registry, poller, notified = _setup({1: page})
    cid = stable_id(ADDR)

    assert poller.poll() == [cid]
    page.html = '<div id="cascade">Hello, world</div>'
    assert poller.poll() == [cid]

    assert notified == [cid, cid]
    assert registry.get(cid).snapshot.html == '<div id="cascade">Hello, world</div>'


def test_identical_content_is_suppressed():
    page = FakePage(html='<div id="cascade">Same</div>')
    registry, poller, notified = _setup({1: page})

    poller.poll()
    first = registry.get(stable_id(ADDR)).snapshot
    for _ in range(3):
        assert poller.poll() == []

    assert notified == [stable_id(ADDR)]
    assert registry.get(stable_id(ADDR)).snapshot is first


def test_failed_capture_keeps_previous_snapshot():
    page = FakePage(html='<div id="cascade">Kept</div>')
    registry, poller, notified = _setup({1: page})
    poller.poll()
    cascade = registry.get(stable_id(ADDR))

    page.cascade = False
    assert poller.poll() == []
    cascade.session.close()
    assert poller.poll() == []

    assert cascade.snapshot.html == '<div id="cascade">Kept</div>'
    assert cascade.snapshot_hash == fingerprint('<div id="cascade">Kept</div>')
    assert len(notified) == 1


def test_one_failing_cascade_does_not_block_others():
    env = FakeEnvironment()
    good = 'ws://127.0.0.1:9000/devtools/page/GOOD'
    bad = 'ws://127.0.0.1:9001/devtools/page/BAD'
    env.add(good, pages={1: FakePage(html='<div id="cascade">ok</div>')})
    env.add(bad, port=9001)
    registry = CascadeRegistry(ports=[9000, 9001], scanner=env.scanner, opener=env.opener)
    registry.discover()
    registry.get(stable_id(bad)).session.close()

    notified = []
    SnapshotPoller(registry, on_change=notified.append).poll()

    assert notified == [stable_id(good)]


def test_poll_with_no_cascades():
    env = FakeEnvironment()
    registry = CascadeRegistry(ports=[9000], scanner=env.scanner, opener=env.opener)
    assert SnapshotPoller(registry).poll() == []


def test_overlapping_poll_is_skipped():
    env = FakeEnvironment()
    registry = CascadeRegistry(ports=[9000], scanner=env.scanner, opener=env.opener)
    poller = SnapshotPoller(registry)
    poller._lock.acquire()
    try:
        assert poller.poll() is None
    finally:
        poller._lock.release()


def test_hung_cascade_does_not_block_others():
    env = FakeEnvironment()
    good = 'ws://127.0.0.1:9000/devtools/page/GOOD'
    hung = 'ws://127.0.0.1:9001/devtools/page/HUNG'
    env.add(good, pages={1: FakePage(html='<div id="cascade">ok</div>')})
    env.add(hung, port=9001, pages={1: FakePage(html='<div id="cascade">slow</div>')})
    registry = CascadeRegistry(ports=[9000, 9001], scanner=env.scanner, opener=env.opener)
    registry.discover()

    good_notified = threading.Event()
    hung_saw_good = []
    hung_session = registry.get(stable_id(hung)).session
    real_call = hung_session.call

    def stalled_call(method, params=None, timeout=None):
        # stays busy until the other cascade has been reported
        hung_saw_good.append(good_notified.wait(timeout=5))
        return real_call(method, params, timeout)

    hung_session.call = stalled_call

    def on_change(cid):
        if cid == stable_id(good):
            good_notified.set()

    changed = SnapshotPoller(registry, on_change=on_change).poll()

    assert hung_saw_good == [True]
    assert sorted(changed) == sorted([stable_id(good), stable_id(hung)])
