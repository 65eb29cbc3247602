import json

import pytest

from api_server import create_app
from cascade_monitor import CascadeMonitor
from cascade_registry import stable_id
from fakes import FakeEnvironment, FakePage

ADDR = 'ws://127.0.0.1:9000/devtools/page/AAAA'
CID = stable_id(ADDR)


@pytest.fixture
def page():
    return FakePage(titles=['Fix flaky test', None, None, None], active=True,
                    html='<div id="cascade"><p>Done.</p></div>', css_rules=['body { margin: 0; }'],
                    buttons={'button[type="submit"]', 'button[aria-label*="History"]'})


@pytest.fixture
def monitor(page):
    env = FakeEnvironment()
    env.add(ADDR, pages={1: page})
    monitor = CascadeMonitor(ports=[9000], scanner=env.scanner, opener=env.opener)
    monitor.registry.discover()
    monitor.poller.poll()
    return monitor


@pytest.fixture
def client(monitor, tmp_path):
    (tmp_path / 'index.html').write_text('<html>phone</html>')
    app = create_app(monitor, static_dir=tmp_path)
    app.config['TESTING'] = True
    return app.test_client()


def test_list_cascades(client):
    resp = client.get('/cascades')
    assert resp.status_code == 200
    assert resp.get_json() == [{'id': CID, 'title': 'Fix flaky test', 'active': True}]


def test_get_snapshot(client):
    resp = client.get(f'/snapshot/{CID}')
    assert resp.status_code == 200
    assert resp.get_json() == {
        'html': '<div id="cascade"><p>Done.</p></div>',
        'bodyBg': 'rgb(0, 0, 0)',
        'bodyColor': 'rgb(255, 255, 255)',
    }


def test_primary_snapshot(client):
    resp = client.get('/snapshot')
    assert resp.status_code == 200
    assert resp.get_json()['html'] == '<div id="cascade"><p>Done.</p></div>'


def test_primary_snapshot_without_cascades(tmp_path):
    env = FakeEnvironment()
    client = create_app(CascadeMonitor(ports=[9000], scanner=env.scanner, opener=env.opener),
                        static_dir=tmp_path).test_client()
    resp = client.get('/snapshot')
    assert resp.status_code == 503
    assert resp.get_json() == {'error': 'No snapshot'}


@pytest.mark.parametrize('path', ['/snapshot/nope', '/styles/nope'])
def test_unknown_cascade_is_404(client, path):
    resp = client.get(path)
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Cascade not found'}


@pytest.mark.parametrize('path, body', [
    ('/send/nope', {'message': 'hi'}),
    ('/action/nope/new', None),
])
def test_unknown_cascade_post_is_404(client, path, body):
    resp = client.post(path, json=body)
    assert resp.status_code == 404


def test_get_styles(client):
    resp = client.get(f'/styles/{CID}')
    assert resp.get_json() == {'css': '#cascade { margin: 0; }\n'}


def test_send_message(client, page):
    resp = client.post(f'/send/{CID}', json={'message': 'ship it'})
    assert resp.status_code == 200
    assert resp.get_json() == {'success': True}
    assert page.typed == ['ship it']


@pytest.mark.parametrize('body', [{}, {'message': ''}, {'message': 42}, None])
def test_send_requires_message(client, page, body):
    resp = client.post(f'/send/{CID}', json=body)
    assert resp.status_code == 400
    assert page.typed == []


def test_send_failure_is_500(client, page):
    page.editor = None
    resp = client.post(f'/send/{CID}', json={'message': 'hello'})
    assert resp.status_code == 500
    assert resp.get_json() == {'ok': False, 'reason': 'no editor found'}


def test_action(client, page):
    resp = client.post(f'/action/{CID}/history')
    assert resp.status_code == 200
    assert resp.get_json() == {'success': True, 'message': 'Clicked history'}
    assert page.clicked == ['button[aria-label*="History"]']


def test_unknown_action_is_500(client, page):
    resp = client.post(f'/action/{CID}/explode')
    assert resp.status_code == 500
    assert resp.get_json() == {'ok': False, 'reason': 'Unknown action: explode'}
    assert page.clicked == []


def test_static_client(client):
    resp = client.get('/index.html')
    assert resp.status_code == 200
    assert b'phone' in resp.data


def _text(chunk):
    return chunk.decode('utf-8') if isinstance(chunk, bytes) else chunk


def test_events_stream(client, monitor):
    resp = client.get('/events')
    assert resp.status_code == 200
    assert resp.mimetype == 'text/event-stream'

    chunks = iter(resp.response)
    assert _text(next(chunks)) == ': connected\n\n'
    first = _text(next(chunks))
    assert first.startswith('data: ')
    message = json.loads(first[len('data: '):])
    assert message['type'] == 'cascade_list'
    assert [c['id'] for c in message['cascades']] == [CID]

    monitor.broadcaster.snapshot_update(CID)
    update = json.loads(_text(next(chunks))[len('data: '):])
    assert update == {'type': 'snapshot_update', 'cascadeId': CID}

    assert monitor.broadcaster.observer_count == 1
    resp.close()
    assert monitor.broadcaster.observer_count == 0


@pytest.mark.parametrize('body', [None, {}, {'message': ''}])
def test_unknown_cascade_wins_over_bad_body(client, body):
    resp = client.post('/send/nope', json=body)
    assert resp.status_code == 404
    assert resp.get_json() == {'error': 'Cascade not found'}


@pytest.mark.parametrize('path, body', [
    (f'/send/{CID}', {'message': 'hi'}),
    (f'/action/{CID}/new', None),
])
def test_garbled_window_answer_is_a_structured_failure(client, monitor, path, body):
    monitor.registry.get(CID).session.call = lambda method, params=None, timeout=None: {'result': 'garbage'}
    resp = client.post(path, json=body)
    assert resp.status_code == 500
    data = resp.get_json()
    assert data['ok'] is False
    assert 'malformed' in data['reason']
