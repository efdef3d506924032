import json
import logging
import os
import tempfile
import time
from threading import Lock
from typing import List, Optional

from .sealing import PLACEHOLDER, SealError

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class HistoryStore:
    """
    Append-only message list backed by a flat JSON file.

    With autosave on, every change rewrites the whole file. Otherwise the
    store is only marked dirty and flush() has to be called periodically.
    """

    def __init__(self, path: str, cipher=None, autosave: bool = True):
        self.path = path
        self.cipher = cipher
        self.autosave = autosave
        self.lock = Lock()
        # held from snapshot to os.replace so saves land in order
        self.write_lock = Lock()
        self.messages: List[dict] = []
        self.dirty = False

    # ------------------------------------------------------------------
    # Disk

    def load(self):
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                records = json.load(f)
        except FileNotFoundError:
            logger.info("No messages file found. Starting fresh.")
            records = []
        except (OSError, ValueError) as exc:
            logger.warning("Could not read %s (%s). Starting fresh.", self.path, exc)
            records = []

        loaded = [self._from_disk(r) for r in records if isinstance(r, dict) and r.get('id')]
        with self.lock:
            self.messages = loaded
            self.dirty = False
        logger.info("Loaded %d messages.", len(loaded))

    def save(self):
        with self.write_lock:
            with self.lock:
                records = [self._to_disk(m) for m in self.messages]
                self.dirty = False
            directory = os.path.dirname(os.path.abspath(self.path))
            fd, tmp = tempfile.mkstemp(prefix='.history-', dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(records, f, indent=2, ensure_ascii=False)
                os.replace(tmp, self.path)
            except BaseException:
                os.unlink(tmp)
                raise
        logger.debug("Messages saved (%d).", len(records))

    def flush(self) -> bool:
        '''Save only if something changed since the last write.'''
        if not self.dirty:
            return False
        self.save()
        return True

    def _changed(self):
        self.dirty = True
        if self.autosave:
            self.save()

    def _to_disk(self, message: dict) -> dict:
        if self.cipher is None:
            return dict(message)
        return self.cipher.seal(message)

    def _from_disk(self, record: dict) -> dict:
        if 'sealed' not in record:
            return record
        if self.cipher is None:
            logger.warning("Message %s is sealed but no HISTORY_KEY is set", record['id'])
            out = {k: v for k, v in record.items() if k != 'sealed'}
            out['text'] = PLACEHOLDER
            return out
        try:
            return self.cipher.unseal(record)
        except SealError as exc:
            logger.warning("%s", exc)
            out = {k: v for k, v in record.items() if k != 'sealed'}
            out['text'] = PLACEHOLDER
            return out

    # ------------------------------------------------------------------
    # Messages

    def append(self, message: dict) -> bool:
        '''Store a message. Returns False if its id is already stored.'''
        with self.lock:
            if any(m['id'] == message['id'] for m in self.messages):
                return False
            self.messages.append(message)
        self._changed()
        return True

    def get(self, message_id: str) -> Optional[dict]:
        with self.lock:
            for m in self.messages:
                if m['id'] == message_id:
                    return dict(m)
        return None

    def remove(self, message_id: str, check=None) -> Optional[dict]:
        '''Drop a message and return it, or None if it is not stored.

        `check` is called with the message under the lock before removal;
        an exception from it leaves the message in place.
        '''
        with self.lock:
            removed = next((m for m in self.messages if m['id'] == message_id), None)
            if removed is None:
                return None
            if check is not None:
                check(dict(removed))
            self.messages = [m for m in self.messages if m['id'] != message_id]
        self._changed()
        return removed

    def mark_read(self, message_id: str) -> Optional[dict]:
        with self.lock:
            for m in self.messages:
                if m['id'] == message_id:
                    if m.get('read'):
                        return dict(m)
                    m['read'] = True
                    found = dict(m)
                    break
            else:
                return None
        self._changed()
        return found

    def purge_expired(self, now: Optional[int] = None) -> List[str]:
        '''Drop every message whose expiresAt has passed. Returns their ids.'''
        now = now_ms() if now is None else now
        with self.lock:
            expired = [m['id'] for m in self.messages if m.get('expiresAt') is not None and m['expiresAt'] <= now]
            if not expired:
                return []
            self.messages = [m for m in self.messages if m['id'] not in expired]
        self._changed()
        return expired

    def snapshot(self, now: Optional[int] = None) -> List[dict]:
        '''Copies of all live messages, oldest first.'''
        now = now_ms() if now is None else now
        with self.lock:
            return [dict(m) for m in self.messages
                    if m.get('expiresAt') is None or m['expiresAt'] > now]

    def __len__(self):
        with self.lock:
            return len(self.messages)
