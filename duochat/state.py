from flask import current_app

from .history import HistoryStore
from .sessions import KeyDirectory, SessionRegistry

# Both participants share this one Socket.IO room.
ROOM = 'pair'


class ChatState:
    """Everything the server keeps between events, held per Flask app."""

    def __init__(self, store: HistoryStore):
        self.sessions = SessionRegistry()
        self.keys = KeyDirectory()
        self.store = store


def get_state() -> ChatState:
    return current_app.extensions['duochat']
