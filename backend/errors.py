"""
Domain errors of the table-session / order / billing core.

Every error carries a human readable message plus a context dict
(entity id, attempted transition, ...) so the caller can render a precise
message. ``main.py`` turns them into JSON responses with ``status_code``.
"""
from typing import Any, Dict, Optional


class LifecycleError(Exception):
    """Base class for all errors raised by the lifecycle services"""

    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "detail": self.message, "context": self.context}


class ValidationError(LifecycleError):
    """Malformed or out-of-range input: empty cart, non-positive amounts, ..."""

    status_code = 400


class NotFoundError(LifecycleError):
    """Unknown session, table, order, item or split id"""

    status_code = 404

    def __init__(self, entity: str, entity_id: Any, message: Optional[str] = None):
        super().__init__(message or f"{entity} {entity_id} not found", entity=entity, id=entity_id)


class ConflictError(LifecycleError):
    """Table already occupied, concurrent update on the same session"""

    status_code = 409


class InvalidStateError(LifecycleError):
    """Transition or mutation attempted outside its allowed state set"""

    status_code = 409


ERROR_KINDS = {
    cls.__name__: cls
    for cls in (ValidationError, NotFoundError, ConflictError, InvalidStateError)
}


def error_from_payload(payload: Dict[str, Any], status_code: int) -> LifecycleError:
    """Rebuild a domain error from the JSON body produced by ``LifecycleError.to_dict``"""
    kind = payload.get("error")
    message = payload.get("detail") or f"request failed with status {status_code}"
    context = payload.get("context") or {}
    if kind == "NotFoundError":
        return NotFoundError(context.get("entity", "entity"), context.get("id"), message)
    cls = ERROR_KINDS.get(kind)
    if cls is None:
        if status_code == 404:
            return NotFoundError(context.get("entity", "entity"), context.get("id"), message)
        cls = ConflictError if status_code == 409 else ValidationError
    if not isinstance(message, str):
        message = str(message)
    return cls(message, **context)
