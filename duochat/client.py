import logging
import uuid
from collections import OrderedDict
from functools import partial
from typing import Callable, Optional

import socketio

from .errors import KeyExchangePending
from .peercrypto import PeerCipher

logger = logging.getLogger(__name__)


class ChatClient:
    """
    Python peer for the duochat server.

    Messages are kept in `pending` until the server acknowledges them and
    are sent again after every successful (re)authentication. The server
    ignores ids it already stored, so a resend never duplicates.
    """

    def __init__(self, url: str, password: str, sio=None, cipher: Optional[PeerCipher] = None,
                 encrypt: bool = True, view_delete: bool = False,
                 on_message: Optional[Callable[[dict], None]] = None):
        self.url = url
        self.password = password
        self.sio = sio if sio is not None else socketio.Client(reconnection=True)
        self.cipher = cipher or PeerCipher()
        self.encrypt = encrypt
        self.view_delete = view_delete
        self.on_message = on_message

        self.role: Optional[str] = None
        self.partner_online = False
        self.partner_typing = False
        self.last_error: Optional[str] = None
        self.history = []
        self.pending = OrderedDict()   # message id -> payload awaiting ack

        for event, handler in (
                ('connect', self._on_connect),
                ('disconnect', self._on_disconnect),
                ('auth-success', self._on_auth_success),
                ('auth-failure', self._on_error),
                ('error-message', self._on_error),
                ('receive-message', self._on_receive),
                ('exchange-key', self._on_exchange_key),
                ('partner-online', self._on_partner_online),
                ('partner-offline', self._on_partner_offline),
                ('typing', self._on_typing),
                ('stop-typing', self._on_stop_typing),
                ('message-read', self._on_read),
                ('message-autodeleted-clean', self._forget),
                ('message-deleted', self._forget)):
            self.sio.on(event, handler)

    # ------------------------------------------------------------------
    # Public API

    def connect(self):
        self.sio.connect(self.url, transports=['websocket', 'polling'])

    def close(self):
        self.sio.disconnect()

    def send(self, text: str, timer: Optional[float] = None) -> str:
        '''Queue a message and push it out if we're signed in.'''
        message_id = str(uuid.uuid4())
        payload = {'messageId': message_id}
        if self.encrypt:
            if not self.cipher.ready:
                raise KeyExchangePending('E2EE not yet established with partner.')
            payload.update(self.cipher.encrypt(text))
        else:
            payload['text'] = text
        if timer is not None:
            payload['timer'] = timer

        self.pending[message_id] = payload
        self.history.append({'id': message_id, 'user': self.role, 'text': text, 'read': False})
        self._deliver(message_id)
        return message_id

    def flush_pending(self):
        for message_id in list(self.pending):
            self._deliver(message_id)

    def typing(self):
        self.sio.emit('typing')

    def stop_typing(self):
        self.sio.emit('stop-typing')

    def delete(self, message_id: str):
        self.sio.emit('delete-message', message_id)

    # ------------------------------------------------------------------
    # Internals

    def _deliver(self, message_id):
        if self.role is None:
            return
        for m in self.history:
            if m['id'] == message_id:
                m['user'] = self.role
        self.sio.emit('send-message', self.pending[message_id],
                      callback=partial(self._on_ack, message_id))

    def _on_ack(self, message_id, result=None):
        if isinstance(result, dict) and result.get('status') == 'ok':
            self.pending.pop(message_id, None)
            return
        # rejected by the server; resending would be rejected again
        self.pending.pop(message_id, None)
        if isinstance(result, dict):
            self.last_error = result.get('message')
        logger.warning("Message %s was not accepted: %s", message_id, result)

    def _open(self, message: dict) -> dict:
        return {
            'id': message['id'],
            'user': message.get('user'),
            'text': self.cipher.decrypt(message),
            'timestamp': message.get('timestamp'),
            'read': message.get('read', False),
        }

    def _on_connect(self):
        self.sio.emit('authenticate-user', {'password': self.password})

    def _on_disconnect(self, *args):
        logger.info("Disconnected from %s", self.url)
        self.role = None
        self.partner_online = False
        self.partner_typing = False

    def _on_auth_success(self, data):
        self.role = data['username']
        self.last_error = None
        unsent = [m for m in self.history if m['id'] in self.pending]
        self.history = [self._open(m) for m in data.get('history', [])]
        stored = {m['id'] for m in self.history}
        self.history.extend(m for m in unsent if m['id'] not in stored)
        logger.info("Signed in as %s (%d messages in history)", self.role, len(self.history))
        self.sio.emit('exchange-key', {'publicKey': self.cipher.public_key_b64()})
        for m in self.history:
            if m['user'] not in (self.role, None) and (self.view_delete or not m['read']):
                self._acknowledge(m['id'])
        self.flush_pending()

    def _on_error(self, message):
        self.last_error = message
        logger.warning("Server said: %s", message)

    def _on_receive(self, message):
        opened = self._open(message)
        self.history.append(opened)
        if self.on_message is not None:
            self.on_message(opened)
        self._acknowledge(message['id'])

    def _acknowledge(self, message_id):
        if self.view_delete:
            self.sio.emit('message-viewed-and-delete', message_id)
        else:
            self.sio.emit('message-read', message_id)

    def _on_exchange_key(self, data):
        if data.get('user') == self.role:
            return
        self.cipher.derive(data['publicKey'])
        logger.info("E2EE established with %s", data.get('user'))

    def _on_partner_online(self, user):
        if user != self.role:
            self.partner_online = True

    def _on_partner_offline(self, user):
        if user != self.role:
            self.partner_online = False
            self.partner_typing = False
            # it comes back with a fresh key pair
            self.cipher.reset()

    def _on_typing(self, user):
        self.partner_typing = True

    def _on_stop_typing(self, user):
        self.partner_typing = False

    def _on_read(self, data):
        for m in self.history:
            if m['id'] == data.get('id'):
                m['read'] = True

    def _forget(self, message_id):
        self.history = [m for m in self.history if m['id'] != message_id]
