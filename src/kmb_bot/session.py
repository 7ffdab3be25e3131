from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .models import RouteDirection

SEARCH = "search"
STOPS = "stops"
ETA = "eta"


class RequestTokens:
    """Monotonic per-flow request tokens.

    A flow takes a token when it starts and checks it is still the newest one
    for that flow before using its result.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._active: dict[str, int] = {}

    def issue(self, flow: str) -> int:
        token = next(self._counter)
        self._active[flow] = token
        return token

    def is_current(self, flow: str, token: int) -> bool:
        return self._active.get(flow) == token


@dataclass
class LookupSession:
    """Lookup state of one chat: the loaded route and what is selected in it."""

    route: str = ""
    directions: Sequence[RouteDirection] = ()
    selected_index: Optional[int] = None
    route_token: Optional[int] = None
    stops_message_id: Optional[int] = None
    eta_message_id: Optional[int] = None
    tokens: RequestTokens = field(default_factory=RequestTokens)

    @property
    def selected_direction(self) -> Optional[RouteDirection]:
        if self.selected_index is None:
            return None
        return self.directions[self.selected_index]

    def load_route(self, route: str, directions: Sequence[RouteDirection], token: int) -> None:
        """Replace the direction set and select its first direction."""

        if not directions:
            raise ValueError("A loaded route needs at least one direction.")
        self.route = route
        self.directions = tuple(directions)
        self.selected_index = 0
        self.route_token = token

    def select(self, index: int) -> RouteDirection:
        if not 0 <= index < len(self.directions):
            raise IndexError(f"No direction {index} for route {self.route or '<none>'}")
        self.selected_index = index
        return self.directions[index]

    def clear_panels(self) -> None:
        """Invalidate in-flight stop list and ETA requests."""

        self.tokens.issue(STOPS)
        self.clear_eta()

    def clear_eta(self) -> None:
        self.tokens.issue(ETA)
