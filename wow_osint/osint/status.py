"""
Fixed-width partial-fetch status strings.

A character is assembled from six independent upstream calls and a guild
from five. Each call's outcome is kept in one slot of a short string stored
in a single column::

    position   0       1        2      3     4       5
    character  STATUS  SUMMARY  MEDIA  PETS  MOUNTS  PROFESSIONS
    success    S       U        V      P     M       R

Uppercase = success, the matching lowercase letter = error, ``-`` = pending.
So ``"SUv---"`` reads: status and summary fetched, media failed, the rest
not attempted yet.

Internally a ``StatusVector`` (one ``FetchState`` per slot) is the source of
truth; strings are parsed and rendered only at the storage boundary. The
module-level functions are pure string-in/string-out wrappers around it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from wow_osint.taxonomy.osint_taxonomy import FetchState

PENDING_CHAR = "-"


@dataclass(frozen=True)
class StatusLayout:
    """Slot order and success letters for one entity type."""

    name: str
    slots: tuple[tuple[str, str], ...]

    @property
    def endpoints(self) -> tuple[str, ...]:
        return tuple(endpoint for endpoint, _ in self.slots)

    @property
    def width(self) -> int:
        return len(self.slots)

    @property
    def allowed_chars(self) -> frozenset[str]:
        chars = {PENDING_CHAR}
        for _, letter in self.slots:
            chars.add(letter.upper())
            chars.add(letter.lower())
        return frozenset(chars)

    def index(self, endpoint: str) -> Optional[int]:
        for i, (name, _) in enumerate(self.slots):
            if name == endpoint:
                return i
        return None

    def char_for(self, position: int, state: FetchState) -> str:
        letter = self.slots[position][1]
        if state is FetchState.SUCCESS:
            return letter.upper()
        if state is FetchState.ERROR:
            return letter.lower()
        return PENDING_CHAR

    def state_for(self, position: int, char: str) -> FetchState:
        letter = self.slots[position][1]
        if char == letter.upper():
            return FetchState.SUCCESS
        if char == letter.lower():
            return FetchState.ERROR
        if char == PENDING_CHAR:
            return FetchState.PENDING
        raise ValueError(
            f"'{char}' is not valid in slot {position} ({self.slots[position][0]}) "
            f"of a {self.name} status"
        )


CHARACTER_LAYOUT = StatusLayout(
    name="character",
    slots=(
        ("STATUS", "S"),
        ("SUMMARY", "U"),
        ("MEDIA", "V"),
        ("PETS", "P"),
        ("MOUNTS", "M"),
        ("PROFESSIONS", "R"),
    ),
)

GUILD_LAYOUT = StatusLayout(
    name="guild",
    slots=(
        ("SUMMARY", "U"),
        ("ROSTER", "R"),
        ("MEMBERS", "M"),
        ("LOGS", "L"),
        ("MASTER", "G"),
    ),
)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class StatusVector:
    """Mutable per-slot fetch outcomes for one entity."""

    def __init__(
        self,
        layout: StatusLayout = CHARACTER_LAYOUT,
        states: Optional[list[FetchState]] = None,
    ) -> None:
        if states is None:
            states = [FetchState.PENDING] * layout.width
        if len(states) != layout.width:
            raise ValueError(
                f"{layout.name} status needs {layout.width} slots, got {len(states)}"
            )
        self.layout = layout
        self.states = list(states)

    @classmethod
    def parse(cls, status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> StatusVector:
        """Parse a stored status string.

        Raises:
            ValueError: Wrong length or a character not allowed in its slot.
        """
        if len(status) != layout.width:
            raise ValueError(
                f"{layout.name} status must be {layout.width} characters, got {status!r}"
            )
        return cls(layout, [layout.state_for(i, ch) for i, ch in enumerate(status)])

    def render(self) -> str:
        return "".join(
            self.layout.char_for(i, state) for i, state in enumerate(self.states)
        )

    def set(self, endpoint: str, state: FetchState) -> None:
        index = self.layout.index(endpoint)
        if index is None:
            raise KeyError(f"unknown {self.layout.name} endpoint '{endpoint}'")
        self.states[index] = state

    def get(self, endpoint: str) -> FetchState:
        index = self.layout.index(endpoint)
        if index is None:
            raise KeyError(f"unknown {self.layout.name} endpoint '{endpoint}'")
        return self.states[index]

    def endpoints_in(self, state: FetchState) -> list[str]:
        return [
            endpoint
            for endpoint, current in zip(self.layout.endpoints, self.states)
            if current is state
        ]

    def _percentage(self, count: int) -> int:
        return _round_half_up(count * 100 / self.layout.width)

    def completion_percentage(self) -> int:
        return self._percentage(
            self.layout.width - len(self.endpoints_in(FetchState.PENDING))
        )

    def success_percentage(self) -> int:
        return self._percentage(len(self.endpoints_in(FetchState.SUCCESS)))

    def error_percentage(self) -> int:
        return self._percentage(len(self.endpoints_in(FetchState.ERROR)))

    def __repr__(self) -> str:
        return f"StatusVector({self.layout.name}, {self.render()!r})"


# ── String API ────────────────────────────────────────────────────────────────


def initial_status(layout: StatusLayout = CHARACTER_LAYOUT) -> str:
    """All-pending status string for a fresh or refresh-ready entity."""
    return PENDING_CHAR * layout.width


def is_valid_status_string(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> bool:
    if len(status) != layout.width:
        return False
    if not set(status) <= layout.allowed_chars:
        return False
    try:
        StatusVector.parse(status, layout)
    except ValueError:
        return False
    return True


def set_status_string(
    status: str,
    endpoint: str,
    state: FetchState,
    layout: StatusLayout = CHARACTER_LAYOUT,
) -> str:
    """Return ``status`` with ``endpoint``'s slot set to ``state``.

    Unknown endpoints leave the string unchanged.

    Raises:
        ValueError: If ``status`` is not a valid status string.
    """
    if layout.index(endpoint) is None:
        return status
    vector = StatusVector.parse(status, layout)
    vector.set(endpoint, state)
    return vector.render()


def get_status_char(
    status: str, endpoint: str, layout: StatusLayout = CHARACTER_LAYOUT
) -> str:
    """Character stored for ``endpoint``; ``-`` when it has no slot."""
    index = layout.index(endpoint)
    if index is None or index >= len(status):
        return PENDING_CHAR
    return status[index]


def is_success(status: str, endpoint: str, layout: StatusLayout = CHARACTER_LAYOUT) -> bool:
    index = layout.index(endpoint)
    if index is None:
        return False
    return get_status_char(status, endpoint, layout) == layout.char_for(index, FetchState.SUCCESS)


def is_error(status: str, endpoint: str, layout: StatusLayout = CHARACTER_LAYOUT) -> bool:
    index = layout.index(endpoint)
    if index is None:
        return False
    return get_status_char(status, endpoint, layout) == layout.char_for(index, FetchState.ERROR)


def is_pending(status: str, endpoint: str, layout: StatusLayout = CHARACTER_LAYOUT) -> bool:
    return get_status_char(status, endpoint, layout) == PENDING_CHAR


def completion_percentage(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> int:
    return StatusVector.parse(status, layout).completion_percentage()


def success_percentage(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> int:
    return StatusVector.parse(status, layout).success_percentage()


def error_percentage(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> int:
    return StatusVector.parse(status, layout).error_percentage()


def successful_endpoints(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> list[str]:
    return StatusVector.parse(status, layout).endpoints_in(FetchState.SUCCESS)


def failed_endpoints(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> list[str]:
    return StatusVector.parse(status, layout).endpoints_in(FetchState.ERROR)


def pending_endpoints(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> list[str]:
    return StatusVector.parse(status, layout).endpoints_in(FetchState.PENDING)


def is_all_success(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> bool:
    return StatusVector.parse(status, layout).success_percentage() == 100


def has_any_error(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> bool:
    return bool(StatusVector.parse(status, layout).endpoints_in(FetchState.ERROR))


def describe_status(status: str, layout: StatusLayout = CHARACTER_LAYOUT) -> str:
    """Human-readable summary, e.g. ``"2 succeeded, 1 failed, 3 pending"``."""
    vector = StatusVector.parse(status, layout)
    succeeded = len(vector.endpoints_in(FetchState.SUCCESS))
    failed = len(vector.endpoints_in(FetchState.ERROR))
    pending = len(vector.endpoints_in(FetchState.PENDING))

    if succeeded == layout.width:
        return "All endpoints succeeded"
    if failed == layout.width:
        return "All endpoints failed"
    if pending == layout.width:
        return "All endpoints pending"

    parts = []
    if succeeded:
        parts.append(f"{succeeded} succeeded")
    if failed:
        parts.append(f"{failed} failed")
    if pending:
        parts.append(f"{pending} pending")
    return ", ".join(parts)
