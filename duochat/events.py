import logging
import math

from flask import current_app, request
from flask_socketio import emit, join_room
from werkzeug.security import check_password_hash

from . import socketio
from .errors import AuthError, ChatError, ChatFull, InvalidPayload, NotAllowed, UnknownMessage
from .history import now_ms
from .sessions import partner_of
from .state import ROOM, get_state

logger = logging.getLogger(__name__)

# WebRTC signalling, relayed to the partner untouched.
CALL_EVENTS = ('call-offer', 'call-answer', 'ice-candidate', 'end-call')
MAX_ID_LENGTH = 128
MAX_KEY_LENGTH = 8192


def current_role(state) -> str:
    role = state.sessions.role_of(request.sid)
    if role is None:
        raise AuthError('Session expired. Please Refresh.')
    return role


def message_id_from(data) -> str:
    if isinstance(data, dict):
        data = data.get('id', data.get('messageId'))
    if not isinstance(data, str) or not data or len(data) > MAX_ID_LENGTH:
        raise InvalidPayload('Invalid message id.')
    return data


def build_message(data, role: str) -> dict:
    '''Validate a send-message payload and turn it into a stored message.'''
    if not isinstance(data, dict):
        raise InvalidPayload('Invalid message.')
    message = {'id': message_id_from(data.get('messageId', data.get('id'))), 'user': role}

    if 'ciphertext' in data:
        ct, iv = data.get('ciphertext'), data.get('iv')
        if not (isinstance(ct, str) and ct and isinstance(iv, str) and iv):
            raise InvalidPayload('Encrypted message needs ciphertext and iv.')
        size = len(ct) + len(iv)
        message['ciphertext'] = ct
        message['iv'] = iv
    else:
        text = data.get('text')
        if not isinstance(text, str) or not text.strip():
            raise InvalidPayload('Message is empty.')
        size = len(text)
        message['text'] = text

    if size > current_app.config['MAX_MESSAGE_LENGTH']:
        raise InvalidPayload('Message too large.')

    message['timestamp'] = now_ms()
    message['read'] = False

    timer = data.get('timer')
    if timer is not None:
        if (isinstance(timer, bool) or not isinstance(timer, (int, float))
                or not math.isfinite(timer) or timer <= 0 or timer > current_app.config['MAX_TIMER']):
            raise InvalidPayload('Invalid timer.')
        message['timer'] = timer
        message['expiresAt'] = message['timestamp'] + int(timer * 1000)
    return message


@socketio.on_error_default
def report_error(e):
    if not isinstance(e, ChatError):
        logger.exception("Unhandled error in %s", request.event['message'])
        raise e
    emit(e.event, str(e))
    return {'status': 'error', 'message': str(e)}


@socketio.on('connect')
def on_connect(auth=None):
    logger.debug("Socket connected: %s", request.sid)


@socketio.on('disconnect')
def on_disconnect(reason=None):
    state = get_state()
    role = state.sessions.release(request.sid)
    if role is None:
        return
    state.keys.drop(role)
    logger.info("%s disconnected", role)
    emit('partner-offline', role, room=ROOM, include_self=False)


@socketio.on('authenticate-user')
def authenticate_user(data=None):
    state = get_state()
    password = data.get('password') if isinstance(data, dict) else data
    if not isinstance(password, str) or not check_password_hash(current_app.config['CHAT_PASSWORD_HASH'], password):
        logger.info("Rejected %s: incorrect password", request.sid)
        raise AuthError('Incorrect password.')

    try:
        role = state.sessions.assign(request.sid)
    except ChatFull:
        logger.info("Rejected %s: chat is full", request.sid)
        raise
    # expired messages go before the newcomer sees the history
    for message_id in state.store.purge_expired():
        emit('message-autodeleted-clean', message_id, room=ROOM)
    join_room(ROOM)
    logger.info("%s authenticated (sid=%s)", role, request.sid)

    emit('auth-success', {'username': role, 'history': state.store.snapshot()})
    emit('partner-online', role, room=ROOM, include_self=False)

    partner = partner_of(role)
    if state.sessions.sid_of(partner) is not None:
        emit('partner-online', partner)
        key = state.keys.get(partner)
        if key:
            emit('exchange-key', {'user': partner, 'publicKey': key})
    return {'status': 'ok', 'username': role}


# Older clients join with this name.
socketio.on('join-chat')(authenticate_user)


@socketio.on('send-message')
def send_message(data=None):
    state = get_state()
    role = current_role(state)
    message = build_message(data, role)
    if state.store.append(message):
        emit('receive-message', message, room=ROOM, include_self=False)
    else:
        # resend of something we already have
        logger.debug("Duplicate message %s from %s", message['id'], role)
    return {'status': 'ok', 'id': message['id']}


@socketio.on('exchange-key')
def exchange_key(data=None):
    state = get_state()
    role = current_role(state)
    key = data.get('publicKey') if isinstance(data, dict) else data
    if not isinstance(key, str) or not key or len(key) > MAX_KEY_LENGTH:
        raise InvalidPayload('Invalid public key.')
    state.keys.publish(role, key)
    logger.info("Public key published by %s", role)
    emit('exchange-key', {'user': role, 'publicKey': key}, room=ROOM, include_self=False)
    return {'status': 'ok'}


@socketio.on('typing')
def typing(data=None):
    role = current_role(get_state())
    emit('typing', role, room=ROOM, include_self=False)


@socketio.on('stop-typing')
def stop_typing(data=None):
    role = current_role(get_state())
    emit('stop-typing', role, room=ROOM, include_self=False)


@socketio.on('message-read')
def message_read(data=None):
    state = get_state()
    role = current_role(state)
    message_id = message_id_from(data)
    message = state.store.get(message_id)
    if message is None:
        raise UnknownMessage('Message not found.')
    if message['user'] == role:
        raise NotAllowed('Cannot mark your own message as read.')
    state.store.mark_read(message_id)
    emit('message-read', {'id': message_id, 'user': role}, room=ROOM, include_self=False)
    return {'status': 'ok', 'id': message_id}


@socketio.on('message-viewed-and-delete')
def message_viewed(data=None):
    state = get_state()
    role = current_role(state)
    message_id = message_id_from(data)

    def recipient_only(message):
        if message['user'] == role:
            raise NotAllowed('Only the recipient can view-delete a message.')

    if state.store.remove(message_id, check=recipient_only) is None:
        # already expired or removed by the other side
        return {'status': 'ok', 'id': message_id}
    logger.info("Message %s viewed by %s and deleted", message_id, role)
    emit('message-autodeleted-clean', message_id, room=ROOM)
    return {'status': 'ok', 'id': message_id}


@socketio.on('delete-message')
def delete_message(data=None):
    state = get_state()
    role = current_role(state)
    message_id = message_id_from(data)

    def author_only(message):
        if message['user'] != role:
            raise NotAllowed('You can only delete your own messages.')

    if state.store.remove(message_id, check=author_only) is None:
        raise UnknownMessage('Message not found.')
    emit('message-deleted', message_id, room=ROOM)
    return {'status': 'ok', 'id': message_id}


def relay_call_event(event):
    def relay(data=None):
        current_role(get_state())
        emit(event, data, room=ROOM, include_self=False)
    relay.__name__ = 'relay_' + event.replace('-', '_')
    return relay


for _event in CALL_EVENTS:
    socketio.on(_event)(relay_call_event(_event))
