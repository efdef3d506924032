import os

DEFAULTS = {
    'SECRET_KEY': 'change_this_to_something_random',
    'CHAT_PASSWORD': 'change_me',
    'HISTORY_FILE': 'messages.json',
    'HISTORY_KEY': None,
    'SAVE_INTERVAL': 0,      # seconds, 0 = rewrite the file on every change
    'SWEEP_INTERVAL': 5,
    'MAX_MESSAGE_LENGTH': 100000,
    'MAX_TIMER': 86400,
    'HOST': '0.0.0.0',
    'PORT': 5000,
    'DEBUG': False,
    'CORS_ORIGINS': '*',
}

INT_KEYS = ('SAVE_INTERVAL', 'SWEEP_INTERVAL', 'MAX_MESSAGE_LENGTH', 'MAX_TIMER', 'PORT')


def from_env(environ=None):
    """Collect overrides for the known keys from the environment."""
    environ = os.environ if environ is None else environ
    found = {}
    for key in DEFAULTS:
        if key not in environ:
            continue
        value = environ[key]
        if key in INT_KEYS:
            value = int(value)
        elif key == 'DEBUG':
            value = value.lower() in ('1', 'true', 'yes')
        found[key] = value
    return found
