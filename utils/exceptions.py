from typing import Dict, List, Optional


class ValidationError(Exception):
    """One or more fields failed validation.

    ``errors`` maps a field name to its messages, e.g. ``{'title': ["can't be blank"]}``.
    """

    def __init__(self, errors: Dict[str, List[str]]):
        self.errors = errors
        super().__init__('; '.join(f'{field} {", ".join(msgs)}' for field, msgs in errors.items()))


class DanglingReferenceError(Exception):
    """An attachment points at a blob that does not exist."""

    def __init__(self, slot: str, blob_id: Optional[object] = None):
        self.slot = slot
        self.blob_id = blob_id
        super().__init__(f'blob {blob_id} for slot {slot!r} does not exist')


class StoreUnavailableError(RuntimeError):
    """The storage backend could not complete a put/get/delete."""
