import logging

from . import socketio
from .state import ROOM

logger = logging.getLogger(__name__)


def sweep_expired(app):
    '''Remove timed-out messages and tell both peers to drop them.'''
    store = app.extensions['duochat'].store
    expired = store.purge_expired()
    for message_id in expired:
        socketio.emit('message-autodeleted-clean', message_id, room=ROOM)
    if expired:
        logger.info("Expired %d message(s)", len(expired))
    return expired


def expiry_loop(app):
    while True:
        socketio.sleep(app.config['SWEEP_INTERVAL'])
        try:
            sweep_expired(app)
        except OSError:
            logger.exception("Expiry sweep failed to write history")


def flush_loop(app):
    store = app.extensions['duochat'].store
    while True:
        socketio.sleep(app.config['SAVE_INTERVAL'])
        try:
            store.flush()
        except OSError:
            logger.exception("Periodic history save failed")


def start_background_jobs(app):
    socketio.start_background_task(expiry_loop, app)
    if app.config['SAVE_INTERVAL'] > 0:
        socketio.start_background_task(flush_loop, app)
