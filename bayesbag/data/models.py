"""
Match data structures.

A Match holds a fixed-arity tuple of participant slots. Each slot names the
participating object and carries that object's measurements in the match.
Objects own no state; everything known about them is derived from the
matches they appear in.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Hashable, Mapping, Optional, Tuple


@dataclass(frozen=True)
class ParticipantSlot:
    """One participant of a match."""

    object_id: Hashable
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Read-only view; slots are shared between ensembles and tables
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)


@dataclass(frozen=True)
class Match:
    """One historical (outcome known) or new (outcome unknown) event."""

    slots: Tuple[ParticipantSlot, ...]
    y: Optional[Any] = None
    time: Optional[Any] = None
    match_id: Optional[Hashable] = None

    def __post_init__(self):
        object.__setattr__(self, "slots", tuple(self.slots))
        if not self.slots:
            raise ValueError("A match needs at least one participant slot")

    @property
    def n_slots(self) -> int:
        return len(self.slots)

    @property
    def object_ids(self) -> Tuple[Hashable, ...]:
        """Object identifiers in slot order."""
        return tuple(slot.object_id for slot in self.slots)

    @property
    def has_outcome(self) -> bool:
        return self.y is not None

    @classmethod
    def new(cls, *object_ids: Hashable, time: Optional[Any] = None, match_id=None) -> "Match":
        """Build an outcome-unknown match with no measurements."""
        return cls(
            slots=tuple(ParticipantSlot(object_id) for object_id in object_ids),
            time=time,
            match_id=match_id,
        )
