from functools import lru_cache

from pos_terminal.clients.backend import BackendClient
from pos_terminal.core.config import settings
from pos_terminal.services.sessions import SessionRegistry, registry


@lru_cache(maxsize=1)
def _backend() -> BackendClient:
    return BackendClient.from_settings(settings)


# FastAPI dependencies
def get_backend() -> BackendClient:
    return _backend()


def get_registry() -> SessionRegistry:
    return registry
