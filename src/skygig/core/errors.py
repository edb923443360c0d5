"""Error taxonomy for marketplace operations.

Every operation either commits fully or raises one of these without side
effects. None of them is fatal to the process.
"""

from enum import Enum
from typing import Any, Dict, Optional, Type, TypeVar

E = TypeVar("E", bound=Enum)


class MarketplaceError(Exception):
    """Base class for recoverable domain errors."""

    code = "marketplace_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(MarketplaceError):
    """Malformed input, e.g. a title that is too short or empty message text."""

    code = "validation_error"

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message, {"errors": errors or {}})
        self.errors = errors or {}


class InvalidState(MarketplaceError):
    """Operation is not legal for the entity's current state."""

    code = "invalid_state"


class InvalidTransition(InvalidState):
    """Requested status transition is not allowed from the current status."""

    code = "invalid_transition"


class Conflict(MarketplaceError):
    """Duplicate application or deletion that would orphan open applications."""

    code = "conflict"


class Forbidden(MarketplaceError):
    """Caller is not a participant or owner of the targeted aggregate."""

    code = "forbidden"


class NotFound(MarketplaceError):
    """Unknown identifier."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


def parse_enum(enum_type: Type[E], value: Any, field: str) -> E:
    """Convert ``value`` to ``enum_type`` or raise :class:`ValidationError` for ``field``."""
    try:
        return enum_type(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValidationError(
            f"Unknown {field}", {field: f"Expected one of {allowed}, got {value!r}"}
        ) from None
