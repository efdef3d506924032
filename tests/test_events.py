import time

from conftest import by_name, drain, received

from duochat.history import HistoryStore
from duochat.tasks import sweep_expired


def pair(login):
    a = login()
    b = login()
    drain(a, b)
    return a, b


# --- authentication -------------------------------------------------------

def test_first_two_users_get_both_roles(login):
    a = login()
    events = a.get_received()
    success = by_name(events, 'auth-success')
    assert success == [{'username': 'UserA', 'history': []}]

    b = login()
    assert by_name(b.get_received(), 'auth-success')[0]['username'] == 'UserB'


def test_wrong_password_is_rejected(connect):
    client = connect()
    ack = client.emit('authenticate-user', {'password': 'nope'}, callback=True)
    assert ack == {'status': 'error', 'message': 'Incorrect password.'}
    assert received(client, 'auth-failure') == ['Incorrect password.']


def test_no_more_than_two_sessions(login):
    login()
    login()
    third = login()
    assert received(third, 'auth-failure') == ['Chat is full. Only two users can join.']


def test_reauthenticating_keeps_the_role(login):
    a, b = pair(login)
    ack = a.emit('authenticate-user', {'password': 'hunter2'}, callback=True)
    assert ack == {'status': 'ok', 'username': 'UserA'}


def test_join_chat_alias(connect):
    client = connect()
    ack = client.emit('join-chat', {'password': 'hunter2'}, callback=True)
    assert ack['username'] == 'UserA'


def test_disconnect_frees_the_role(login):
    a, b = pair(login)
    a.disconnect()
    assert received(b, 'partner-offline') == ['UserA']

    c = login()
    assert by_name(c.get_received(), 'auth-success')[0]['username'] == 'UserA'


def test_presence_notifications(login):
    a = login()
    drain(a)
    b = login()
    assert received(a, 'partner-online') == ['UserB']
    assert received(b, 'partner-online') == ['UserA']


# --- relay -----------------------------------------------------------------

def test_message_goes_to_exactly_the_other_peer(login, connect):
    a, b = pair(login)
    outsider = connect()
    drain(outsider)

    ack = a.emit('send-message', {'messageId': 'm1', 'text': 'hello'}, callback=True)
    assert ack == {'status': 'ok', 'id': 'm1'}

    got = received(b, 'receive-message')
    assert len(got) == 1
    assert got[0]['id'] == 'm1'
    assert got[0]['user'] == 'UserA'
    assert got[0]['text'] == 'hello'
    assert isinstance(got[0]['timestamp'], int)
    assert received(a, 'receive-message') == []
    assert outsider.get_received() == []


def test_encrypted_payload_is_relayed_untouched(login):
    a, b = pair(login)
    a.emit('send-message', {'messageId': 'm1', 'ciphertext': 'q83v', 'iv': 'AAAA'})
    got = received(b, 'receive-message')[0]
    assert got['ciphertext'] == 'q83v'
    assert got['iv'] == 'AAAA'
    assert 'text' not in got


def test_sending_without_a_session(connect):
    client = connect()
    client.emit('send-message', {'messageId': 'm1', 'text': 'hello'})
    assert received(client, 'auth-failure') == ['Session expired. Please Refresh.']


def test_invalid_payloads_are_reported(login):
    a, b = pair(login)
    cases = [
        ('just a string', 'Invalid message.'),
        ({'text': 'no id'}, 'Invalid message id.'),
        ({'messageId': 'm1', 'text': '   '}, 'Message is empty.'),
        ({'messageId': 'm1', 'ciphertext': 'abc'}, 'Encrypted message needs ciphertext and iv.'),
        ({'messageId': 'm1', 'text': 'x', 'timer': -1}, 'Invalid timer.'),
        ({'messageId': 'm1', 'text': 'x', 'timer': True}, 'Invalid timer.'),
        ({'messageId': 'm1', 'text': 'x', 'timer': float('nan')}, 'Invalid timer.'),
        ({'messageId': 'm1', 'text': 'x', 'timer': float('inf')}, 'Invalid timer.'),
    ]
    for payload, error in cases:
        ack = a.emit('send-message', payload, callback=True)
        assert ack == {'status': 'error', 'message': error}
    assert len(received(a, 'error-message')) == len(cases)
    assert received(b, 'receive-message') == []


def test_oversized_message(make_app, login):
    app = make_app(MAX_MESSAGE_LENGTH=10)
    a = login(target=app)
    ack = a.emit('send-message', {'messageId': 'm1', 'text': 'x' * 11}, callback=True)
    assert ack['message'] == 'Message too large.'


def test_resend_is_not_duplicated(login):
    a, b = pair(login)
    a.emit('send-message', {'messageId': 'm1', 'text': 'hello'})
    ack = a.emit('send-message', {'messageId': 'm1', 'text': 'hello'}, callback=True)
    assert ack == {'status': 'ok', 'id': 'm1'}
    assert len(received(b, 'receive-message')) == 1


def test_history_survives_restart(make_app, login):
    app = make_app()
    a = login(target=app)
    a.emit('send-message', {'messageId': 'm1', 'text': 'persist me'})

    restarted = make_app()
    c = login(target=restarted)
    history = by_name(c.get_received(), 'auth-success')[0]['history']
    assert [m['text'] for m in history] == ['persist me']


def test_history_sealed_at_rest(make_app, login, history_file):
    app = make_app(HISTORY_KEY='fixed-server-key')
    a = login(target=app)
    a.emit('send-message', {'messageId': 'm1', 'text': 'top secret'})
    assert 'top secret' not in history_file.read_text()

    restarted = make_app(HISTORY_KEY='fixed-server-key')
    c = login(target=restarted)
    history = by_name(c.get_received(), 'auth-success')[0]['history']
    assert history[0]['text'] == 'top secret'


# --- key exchange ----------------------------------------------------------

def test_public_key_is_relayed_and_replayed(login):
    a = login()
    drain(a)
    a.emit('exchange-key', {'publicKey': 'A-KEY'})

    b = login()
    events = b.get_received()
    assert by_name(events, 'exchange-key') == [{'user': 'UserA', 'publicKey': 'A-KEY'}]

    b.emit('exchange-key', {'publicKey': 'B-KEY'})
    assert received(a, 'exchange-key') == [{'user': 'UserB', 'publicKey': 'B-KEY'}]


def test_key_dropped_on_disconnect(login):
    a = login()
    a.emit('exchange-key', {'publicKey': 'A-KEY'})
    a.disconnect()
    login()
    b = login()
    assert by_name(b.get_received(), 'exchange-key') == []


def test_invalid_key(login):
    a, b = pair(login)
    ack = a.emit('exchange-key', {'publicKey': ''}, callback=True)
    assert ack['message'] == 'Invalid public key.'


# --- typing, receipts, deletion ------------------------------------------

def test_typing_is_relayed(login):
    a, b = pair(login)
    a.emit('typing')
    a.emit('stop-typing')
    events = b.get_received()
    assert by_name(events, 'typing') == ['UserA']
    assert by_name(events, 'stop-typing') == ['UserA']
    assert a.get_received() == []


def test_read_receipt(app, login):
    a, b = pair(login)
    a.emit('send-message', {'messageId': 'm1', 'text': 'hello'})
    drain(b)

    b.emit('message-read', 'm1')
    assert received(a, 'message-read') == [{'id': 'm1', 'user': 'UserB'}]
    assert app.extensions['duochat'].store.get('m1')['read'] is True

    ack = a.emit('message-read', 'm1', callback=True)
    assert ack['status'] == 'error'


def test_view_and_delete(login, history_file):
    a, b = pair(login)
    a.emit('send-message', {'messageId': 'm1', 'text': 'burn after reading'})
    drain(b)

    ack = a.emit('message-viewed-and-delete', 'm1', callback=True)
    assert ack['message'] == 'Only the recipient can view-delete a message.'

    b.emit('message-viewed-and-delete', 'm1')
    assert received(a, 'message-autodeleted-clean') == ['m1']
    assert received(b, 'message-autodeleted-clean') == ['m1']

    reloaded = HistoryStore(str(history_file))
    reloaded.load()
    assert reloaded.get('m1') is None

    # second view of the same message is harmless and announces nothing
    assert b.emit('message-viewed-and-delete', 'm1', callback=True)['status'] == 'ok'
    assert received(a, 'message-autodeleted-clean') == []
    assert received(b, 'message-autodeleted-clean') == []


def test_author_can_delete(login):
    a, b = pair(login)
    a.emit('send-message', {'messageId': 'm1', 'text': 'oops'})
    drain(b)

    ack = b.emit('delete-message', {'id': 'm1'}, callback=True)
    assert ack['message'] == 'You can only delete your own messages.'

    a.emit('delete-message', 'm1')
    assert received(b, 'message-deleted') == ['m1']
    ack = a.emit('delete-message', 'm1', callback=True)
    assert ack['message'] == 'Message not found.'


def test_timed_message_expires(app, login):
    a, b = pair(login)
    a.emit('send-message', {'messageId': 'm1', 'text': 'soon gone', 'timer': 0.001})
    stored = received(b, 'receive-message')[0]
    assert stored['expiresAt'] == stored['timestamp'] + 1

    time.sleep(0.01)
    assert sweep_expired(app) == ['m1']
    assert received(a, 'message-autodeleted-clean') == ['m1']
    assert received(b, 'message-autodeleted-clean') == ['m1']
    assert len(app.extensions['duochat'].store) == 0


# --- calls -------------------------------------------------------------------

def test_call_signalling_passthrough(login, connect):
    a, b = pair(login)
    offer = {'sdp': 'v=0...', 'type': 'offer'}
    a.emit('call-offer', offer)
    b.emit('call-answer', {'sdp': 'v=0...', 'type': 'answer'})
    a.emit('ice-candidate', {'candidate': 'candidate:1'})
    a.emit('end-call')

    events = b.get_received()
    assert by_name(events, 'call-offer') == [offer]
    assert by_name(events, 'ice-candidate') == [{'candidate': 'candidate:1'}]
    assert by_name(events, 'end-call') == [None]
    assert received(a, 'call-answer') == [{'sdp': 'v=0...', 'type': 'answer'}]

    stranger = connect()
    stranger.emit('call-offer', offer)
    assert received(stranger, 'auth-failure') == ['Session expired. Please Refresh.']


def test_health_endpoint(app, login):
    pair(login)
    resp = app.test_client().get('/health')
    assert resp.get_json() == {'status': 'ok', 'online': ['UserA', 'UserB'], 'messages': 0}


def test_expired_messages_purged_when_someone_joins(app, login):
    a, b = pair(login)
    a.emit('send-message', {'messageId': 'm1', 'text': 'short lived', 'timer': 0.001})
    a.emit('send-message', {'messageId': 'm2', 'text': 'stays'})
    drain(a, b)
    b.disconnect()
    drain(a)

    time.sleep(0.01)
    c = login()
    assert received(a, 'message-autodeleted-clean') == ['m1']
    history = by_name(c.get_received(), 'auth-success')[0]['history']
    assert [m['id'] for m in history] == ['m2']
    assert len(app.extensions['duochat'].store) == 1

    ack = c.emit('message-read', 'm1', callback=True)
    assert ack['message'] == 'Message not found.'
    assert app.test_client().get('/health').get_json()['messages'] == 1
