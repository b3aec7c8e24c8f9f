import logging
from typing import Callable, Dict, List, Any, Awaitable

logger = logging.getLogger(__name__)


class HookManager:
    """
    Manages registration and execution of asynchronous hooks for ceremony events.
    Lets applications react to registrations, logins and deletions without
    touching the ceremony code.
    """
    def __init__(self):
        self._hooks: Dict[str, List[Callable[..., Awaitable[Any]]]] = {}

    def on(self, event_name: str):
        """Decorator to register a hook for an event."""
        def decorator(func: Callable[..., Awaitable[Any]]):
            self.register(event_name, func)
            return func
        return decorator

    def register(self, event_name: str, func: Callable[..., Awaitable[Any]]):
        """Register a function as a hook for an event."""
        self._hooks.setdefault(event_name, []).append(func)
        logger.debug(f"Registered hook '{func.__name__}' for event '{event_name}'")

    async def trigger(self, event_name: str, **kwargs):
        """
        Run every hook for an event, in registration order.
        A failing hook is logged and skipped; the ceremony result stands.
        """
        hooks = self._hooks.get(event_name, [])
        if not hooks:
            return

        logger.debug(f"Triggering {len(hooks)} hooks for event '{event_name}'")
        for hook in hooks:
            try:
                await hook(**kwargs)
            except Exception as e:
                logger.error(f"Error executing hook '{hook.__name__}' for event '{event_name}': {e}", exc_info=True)


# Hook payloads carry ids and usernames only, never tokens.
class Events:
    USER_CREATED = "user_created"
    CREDENTIAL_REGISTERED = "credential_registered"
    CREDENTIAL_DELETED = "credential_deleted"
    USER_AUTHENTICATED = "user_authenticated"
    MANAGEMENT_TOKEN_ISSUED = "management_token_issued"
