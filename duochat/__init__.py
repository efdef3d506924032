"""
duochat: a two-person chat relay built on Flask-SocketIO.

The server assigns the roles UserA and UserB, relays opaque (usually
end-to-end encrypted) payloads between them and keeps the history in a
JSON file.
"""
from flask import Flask
from flask_socketio import SocketIO
from werkzeug.security import generate_password_hash

from . import config
from .history import HistoryStore
from .sealing import HistoryCipher
from .state import ChatState

__version__ = '0.3.0'

socketio = SocketIO()

# Handlers register themselves on `socketio` at import time.
from . import events  # noqa: E402,F401
from .routes import bp  # noqa: E402


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_mapping(config.DEFAULTS)
    app.config.from_mapping(config.from_env())
    if overrides:
        app.config.from_mapping(overrides)

    app.config['CHAT_PASSWORD_HASH'] = generate_password_hash(app.config['CHAT_PASSWORD'])

    cipher = HistoryCipher(app.config['HISTORY_KEY']) if app.config['HISTORY_KEY'] else None
    store = HistoryStore(app.config['HISTORY_FILE'], cipher=cipher,
                         autosave=app.config['SAVE_INTERVAL'] == 0)
    store.load()
    app.extensions['duochat'] = ChatState(store)

    app.register_blueprint(bp)
    socketio.init_app(app, async_mode='threading',
                      cors_allowed_origins=app.config['CORS_ORIGINS'],
                      max_http_buffer_size=app.config['MAX_MESSAGE_LENGTH'] * 2)
    return app
