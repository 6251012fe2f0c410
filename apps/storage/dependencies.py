from fastapi import Request

from apps.storage.services import StorageInterface


def get_storage(request: Request) -> StorageInterface:
    """The backend built at startup; see ``main.create_app``."""
    return request.app.state.storage
