class ChatError(Exception):
    """Error reported back to the client as a plain string."""
    event = 'error-message'


class AuthError(ChatError):
    event = 'auth-failure'


class ChatFull(AuthError):
    pass


class InvalidPayload(ChatError):
    pass


class NotAllowed(ChatError):
    pass


class UnknownMessage(ChatError):
    pass


class KeyExchangePending(ChatError):
    """Raised by the peer client when there is no shared key to encrypt with."""
