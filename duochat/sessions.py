from threading import Lock
from typing import Dict, List, Optional

from .errors import ChatFull

ROLES = ('UserA', 'UserB')


def partner_of(role: str) -> str:
    return ROLES[1] if role == ROLES[0] else ROLES[0]


class SessionRegistry:
    """Maps Socket.IO connection ids to the two chat roles."""

    def __init__(self):
        self.lock = Lock()
        self._roles: Dict[str, str] = {}   # sid -> role

    def assign(self, sid: str) -> str:
        '''Give the connection a role, or return the one it already holds.

        Raises ChatFull when both roles are taken by other connections.
        '''
        with self.lock:
            if sid in self._roles:
                return self._roles[sid]
            taken = set(self._roles.values())
            for role in ROLES:
                if role not in taken:
                    self._roles[sid] = role
                    return role
        raise ChatFull('Chat is full. Only two users can join.')

    def release(self, sid: str) -> Optional[str]:
        with self.lock:
            return self._roles.pop(sid, None)

    def role_of(self, sid: str) -> Optional[str]:
        with self.lock:
            return self._roles.get(sid)

    def sid_of(self, role: str) -> Optional[str]:
        with self.lock:
            for sid, r in self._roles.items():
                if r == role:
                    return sid
        return None

    def online(self) -> List[str]:
        with self.lock:
            return sorted(self._roles.values())

    def __len__(self):
        with self.lock:
            return len(self._roles)


class KeyDirectory:
    """Public keys published by each role. Never persisted."""

    def __init__(self):
        self.lock = Lock()
        self._keys: Dict[str, str] = {}

    def publish(self, role: str, public_key: str):
        with self.lock:
            self._keys[role] = public_key

    def get(self, role: str) -> Optional[str]:
        with self.lock:
            return self._keys.get(role)

    def drop(self, role: str):
        with self.lock:
            self._keys.pop(role, None)
