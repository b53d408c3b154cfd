"""
Exception types raised by the engine.

Failures raised by user-supplied callables (trainers, predictors, custom
fitting functions) are not wrapped; see tag_draw_failure.
"""

from typing import Any, Hashable, Optional

from bayesbag.utils.logging import get_logger

logger = get_logger("errors")


class BayesBagError(Exception):
    """Base exception for engine errors."""
    pass


class SchemaError(BayesBagError):
    """Input does not have the expected columns, attributes or families."""
    pass


class DataSufficiencyError(BayesBagError):
    """Not enough historical measurements to estimate an object."""

    def __init__(
        self,
        message: str,
        object_id: Optional[Hashable] = None,
        attribute: Optional[Any] = None,
    ):
        self.object_id = object_id
        self.attribute = attribute
        super().__init__(message)


def tag_draw_failure(exc: BaseException, role: str, **provenance: Any) -> BaseException:
    """
    Attach provenance (draw indices, object id) to an exception raised by a user callable.

    The exception object is returned unchanged apart from the index
    attributes and a note, so callers can re-raise it as-is.
    """
    for name, value in provenance.items():
        setattr(exc, name, value)

    where = ", ".join(f"{name}={value}" for name, value in provenance.items())
    exc.add_note(f"raised by {role} ({where})")
    logger.error(f"{role} failed: {exc!r}", extra=provenance)
    return exc
