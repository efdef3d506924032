import base64
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger(__name__)

PLACEHOLDER = '[Decryption Error]'


def b64(b: bytes) -> str:
    return base64.b64encode(b).decode()


def b64d(s: str) -> bytes:
    return base64.b64decode(s.encode())


class PeerCipher:
    """
    Client side of the pair's end-to-end encryption.

    Each peer holds an X25519 key pair, publishes the public half through
    the server and derives the same AES-256-GCM key from the partner's
    public key. The server only ever relays the public keys.
    """

    def __init__(self, private_key: Optional[X25519PrivateKey] = None):
        self._private = private_key or X25519PrivateKey.generate()
        self._aes: Optional[AESGCM] = None

    @property
    def ready(self) -> bool:
        return self._aes is not None

    def public_key_b64(self) -> str:
        raw = self._private.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw)
        return b64(raw)

    def derive(self, their_public_b64: str):
        '''Compute the shared key from the partner's published key.'''
        theirs = X25519PublicKey.from_public_bytes(b64d(their_public_b64))
        shared = self._private.exchange(theirs)
        key = HKDF(algorithm=hashes.SHA256(), length=32, salt=None,
                   info=b'duochat e2ee').derive(shared)
        self._aes = AESGCM(key)

    def reset(self):
        self._aes = None

    def encrypt(self, text: str) -> dict:
        if self._aes is None:
            raise RuntimeError("no shared key yet")
        iv = os.urandom(12)
        ct = self._aes.encrypt(iv, text.encode('utf-8'), None)
        return {'ciphertext': b64(ct), 'iv': b64(iv)}

    def decrypt(self, payload: dict) -> str:
        '''Return the plaintext, or the placeholder if it can't be opened.'''
        if 'ciphertext' not in payload:
            return payload.get('text', '')
        if self._aes is None:
            return PLACEHOLDER
        try:
            plain = self._aes.decrypt(b64d(payload['iv']), b64d(payload['ciphertext']), None)
            return plain.decode('utf-8')
        except (InvalidTag, ValueError, KeyError) as exc:
            logger.warning("Decryption failed for message %s: %r", payload.get('id'), exc)
            return PLACEHOLDER
