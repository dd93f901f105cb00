import uuid

from conftest import MINUTE_MS
from stifle.models import now_ms


def names(received):
    return [pkt['name'] for pkt in received]


def test_socket_connect_and_subscribe(sio_client):
    # Ensure we are connected to /ws
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')
    assert 'connected' in names(sio_client.get_received('/ws'))

    sio_client.emit('subscribe', {'user_id': 7}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert {'name': 'subscribed', 'args': [{'room': 'user:7'}], 'namespace': '/ws'} in received


def test_subscribe_requires_user_id(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('subscribe', {}, namespace='/ws')
    assert 'error' in names(sio_client.get_received('/ws'))


def test_ping(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('ping', {'n': 1}, namespace='/ws')
    received = sio_client.get_received('/ws')
    assert received[-1]['name'] == 'pong'
    assert received[-1]['args'] == [{'n': 1}]


def test_sync_pushes_streak_and_score_updates(sio_client, client, user, auth_headers):
    sio_client.emit('subscribe', {'user_id': user.id}, namespace='/ws')
    sio_client.get_received('/ws')  # flush

    unlock_ts = now_ms() - MINUTE_MS
    res = client.post('/api/events/sync', headers=auth_headers, json={
        'events': [
            {'id': str(uuid.uuid4()), 'eventType': 'lock', 'timestamp': unlock_ts - 60 * MINUTE_MS, 'source': 'automatic'},
            {'id': str(uuid.uuid4()), 'eventType': 'unlock', 'timestamp': unlock_ts, 'source': 'automatic'},
        ],
        'lastSync': 0,
        'clientTime': now_ms(),
    })
    assert res.status_code == 200

    received = sio_client.get_received('/ws')
    by_name = {pkt['name']: pkt['args'][0] for pkt in received}
    assert by_name['streak_update']['inStreak'] is False
    assert by_name['streak_update']['user_id'] == user.id
    assert by_name['score_update']['user_id'] == user.id
    assert by_name['score_update']['total_points'] >= 60


def test_unsubscribed_clients_get_nothing(sio_client, client, user, auth_headers):
    sio_client.emit('subscribe', {'user_id': user.id}, namespace='/ws')
    sio_client.emit('unsubscribe', {'user_id': user.id}, namespace='/ws')
    sio_client.get_received('/ws')

    client.post('/api/events/sync', headers=auth_headers, json={
        'events': [{'id': str(uuid.uuid4()), 'eventType': 'lock', 'timestamp': now_ms(), 'source': 'automatic'}],
        'lastSync': 0,
        'clientTime': now_ms(),
    })
    assert sio_client.get_received('/ws') == []
