import pytest

from duochat import create_app, socketio

PASSWORD = 'hunter2'


@pytest.fixture
def history_file(tmp_path):
    return tmp_path / 'messages.json'


@pytest.fixture
def make_app(history_file):
    def _make(**overrides):
        config = {
            'TESTING': True,
            'CHAT_PASSWORD': PASSWORD,
            'HISTORY_FILE': str(history_file),
            'HISTORY_KEY': None,
            'SAVE_INTERVAL': 0,
        }
        config.update(overrides)
        return create_app(config)
    return _make


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def connect(app):
    clients = []

    def _connect(target=None):
        client = socketio.test_client(target or app)
        clients.append(client)
        return client

    yield _connect
    for client in clients:
        if client.is_connected():
            client.disconnect()


@pytest.fixture
def login(connect):
    def _login(password=PASSWORD, target=None):
        client = connect(target)
        client.emit('authenticate-user', {'password': password})
        return client
    return _login


def received(client, name):
    '''Args of every `name` event the client got since the last call.'''
    return [e['args'][0] if e['args'] else None
            for e in client.get_received() if e['name'] == name]


def drain(*clients):
    for client in clients:
        client.get_received()


def by_name(events, name):
    return [e['args'][0] if e['args'] else None for e in events if e['name'] == name]
