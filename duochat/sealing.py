import base64
import json
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

# Message fields that hold user content and get sealed on disk.
SEALED_FIELDS = ('text', 'ciphertext', 'iv')
PLACEHOLDER = '[Decryption Error]'


class SealError(Exception):
    pass


def derive_key(secret: str) -> bytes:
    '''Turn the HISTORY_KEY setting into a 256-bit AES key.'''
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=b'duochat history')
    return hkdf.derive(secret.encode('utf-8'))


class HistoryCipher:
    """
    AES-GCM sealing for history records at rest.

    Only the content fields of a record are sealed; id, author and timing
    stay readable so the store can sort, expire and delete without the key.
    """

    def __init__(self, secret: str):
        self._aes = AESGCM(derive_key(secret))

    def seal(self, record: dict) -> dict:
        content = {k: record[k] for k in SEALED_FIELDS if k in record}
        out = {k: v for k, v in record.items() if k not in SEALED_FIELDS}
        nonce = os.urandom(12)
        ct = self._aes.encrypt(nonce, json.dumps(content).encode('utf-8'), record['id'].encode('utf-8'))
        out['sealed'] = base64.b64encode(nonce + ct).decode()
        return out

    def unseal(self, record: dict) -> dict:
        '''Reverse seal(). Raises SealError when the blob cannot be opened.'''
        out = {k: v for k, v in record.items() if k != 'sealed'}
        try:
            blob = base64.b64decode(record['sealed'])
            plain = self._aes.decrypt(blob[:12], blob[12:], str(record.get('id', '')).encode('utf-8'))
        except (InvalidTag, ValueError, KeyError) as exc:
            raise SealError(f"cannot unseal message {record.get('id')}") from exc
        out.update(json.loads(plain.decode('utf-8')))
        return out
