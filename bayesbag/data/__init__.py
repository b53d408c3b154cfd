"""
Match data module.

Provides:
- Match and participant slot structures
- Tabular adapter for the ID_<k> / <attr>_<k> column convention
"""

from bayesbag.data.models import Match, ParticipantSlot
from bayesbag.data.table import (
    matches_from_frame,
    matches_to_frame,
    measurement_table,
)

__all__ = [
    "Match",
    "ParticipantSlot",
    "matches_from_frame",
    "matches_to_frame",
    "measurement_table",
]
