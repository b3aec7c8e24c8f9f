from .config import settings, init_settings
from .encryption import encryption_utils
from .exceptions import *
from .hooks import HookManager, Events
