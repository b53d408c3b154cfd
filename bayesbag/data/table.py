"""
Tabular adapter for match data.

Column convention (one row per match):
    ID_<k>        object identifier in participant slot k (k = 1..K)
    <attr>_<k>    measurement of <attr> for the object in slot k
    TIME          optional ordering/weighting key
    y             outcome (historical matches only)

The engine itself never parses column names; it works on Match objects.
"""

import re
from typing import Dict, Hashable, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from bayesbag.constants import ID_PREFIX, OUTCOME_COLUMN, SLOT_SEPARATOR, TIME_COLUMN
from bayesbag.data.models import Match, ParticipantSlot
from bayesbag.errors import SchemaError
from bayesbag.utils import get_logger, is_missing

logger = get_logger("data.table")

_ID_PATTERN = re.compile(rf"^{re.escape(ID_PREFIX)}(\d+)$")
_ATTR_PATTERN = re.compile(rf"^(.+){re.escape(SLOT_SEPARATOR)}(\d+)$")


def _parse_columns(
    columns: Iterable[str],
    reserved: set,
) -> tuple[List[int], Dict[str, Dict[int, str]]]:
    """Split column names into slot numbers and per-slot attribute columns."""
    slot_numbers = []
    attributes: Dict[str, Dict[int, str]] = {}

    for col in columns:
        col = str(col)
        if col in reserved:
            continue
        id_match = _ID_PATTERN.match(col)
        if id_match:
            slot_numbers.append(int(id_match.group(1)))
            continue
        attr_match = _ATTR_PATTERN.match(col)
        if attr_match:
            name, k = attr_match.group(1), int(attr_match.group(2))
            attributes.setdefault(name, {})[k] = col

    slot_numbers.sort()
    return slot_numbers, attributes


def matches_from_frame(
    frame: pd.DataFrame,
    outcome: str = OUTCOME_COLUMN,
    time: str = TIME_COLUMN,
    match_id: Optional[str] = None,
) -> List[Match]:
    """
    Parse a match table into Match objects.

    Args:
        frame: One row per match, columns following the ID_<k>/<attr>_<k>
            convention
        outcome: Outcome column name (optional in the frame)
        time: Time column name (optional in the frame)
        match_id: Optional column holding a match identifier

    Returns:
        Matches in row order

    Raises:
        SchemaError: No ID_<k> columns, non-contiguous slot numbers, or an
            attribute measured for some slots only
    """
    reserved = {outcome, time}
    if match_id:
        reserved.add(match_id)

    slot_numbers, attributes = _parse_columns(frame.columns, reserved)

    if not slot_numbers:
        raise SchemaError(f"No '{ID_PREFIX}<k>' columns found in match table")

    expected = list(range(1, len(slot_numbers) + 1))
    if slot_numbers != expected:
        raise SchemaError(
            f"Slot numbers must be contiguous from 1, got {slot_numbers}"
        )

    slot_set = set(slot_numbers)
    for name, per_slot in attributes.items():
        if set(per_slot) != slot_set:
            raise SchemaError(
                f"Attribute '{name}' has columns for slots {sorted(per_slot)}, "
                f"expected {slot_numbers}"
            )

    has_outcome = outcome in frame.columns
    has_time = time in frame.columns
    has_id = bool(match_id) and match_id in frame.columns

    matches = []
    for row in frame.to_dict(orient="records"):
        slots = []
        for k in slot_numbers:
            object_id = row[f"{ID_PREFIX}{k}"]
            if is_missing(object_id):
                raise SchemaError(f"Missing object identifier in column {ID_PREFIX}{k}")
            slots.append(ParticipantSlot(
                object_id=object_id,
                attributes={name: row[per_slot[k]] for name, per_slot in attributes.items()},
            ))

        y = row[outcome] if has_outcome else None
        matches.append(Match(
            slots=tuple(slots),
            y=None if is_missing(y) else y,
            time=row[time] if has_time else None,
            match_id=row[match_id] if has_id else None,
        ))

    logger.debug(
        f"Parsed {len(matches)} matches with {len(slot_numbers)} slots "
        f"and attributes {list(attributes)}"
    )
    return matches


def matches_to_frame(matches: Sequence[Match]) -> pd.DataFrame:
    """Inverse of matches_from_frame."""
    rows = []
    for match in matches:
        row = {}
        if match.match_id is not None:
            row["match_id"] = match.match_id
        if match.time is not None:
            row[TIME_COLUMN] = match.time
        for k, slot in enumerate(match.slots, start=1):
            row[f"{ID_PREFIX}{k}"] = slot.object_id
            for name, value in slot.attributes.items():
                row[f"{name}{SLOT_SEPARATOR}{k}"] = value
        if match.y is not None:
            row[OUTCOME_COLUMN] = match.y
        rows.append(row)
    return pd.DataFrame(rows)


def attribute_names(matches: Sequence[Match]) -> List[str]:
    """Attribute names in order of first appearance across all slots."""
    names: Dict[str, None] = {}
    for match in matches:
        for slot in match.slots:
            for name in slot.attributes:
                names.setdefault(name, None)
    return list(names)


def object_ids(matches: Sequence[Match], slots: Optional[Sequence[int]] = None) -> List[Hashable]:
    """Distinct object identifiers in order of first appearance."""
    seen: Dict[Hashable, None] = {}
    for match in matches:
        for k, slot in enumerate(match.slots, start=1):
            if slots is None or k in slots:
                seen.setdefault(slot.object_id, None)
    return list(seen)


def measurement_table(
    matches: Sequence[Match],
    object_id: Hashable,
    slots: Optional[Sequence[int]] = None,
    attributes: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """
    Collect one object's measurements across its participations.

    Args:
        matches: Historical matches
        object_id: Object to collect
        slots: Restrict to these slot numbers (1-based); None = all slots
        attributes: Columns to return; None = every attribute seen

    Returns:
        DataFrame with one row per participation. Has a TIME column when any
        of the object's matches carries a time.
    """
    names = list(attributes) if attributes is not None else attribute_names(matches)

    rows = []
    times = []
    for match in matches:
        for k, slot in enumerate(match.slots, start=1):
            if slot.object_id != object_id:
                continue
            if slots is not None and k not in slots:
                continue
            rows.append({name: slot.attributes.get(name, np.nan) for name in names})
            times.append(match.time)

    table = pd.DataFrame(rows, columns=names)
    if any(t is not None for t in times):
        table.insert(0, TIME_COLUMN, times)
    return table
