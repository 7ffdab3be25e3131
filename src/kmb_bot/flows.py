"""User-driven lookup flows: route search, stop list, and arrival estimates.

Each flow takes the chat's :class:`LookupSession`, performs its requests, and
returns an outcome describing what should be shown. Failures are converted
into display text here. A flow whose request was superseded by a newer one
returns ``None`` and its result is dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

import httpx

from .kmb_api import KmbClient, KmbError
from .models import EtaEntry, RouteDirection, StopDetail
from .session import ETA, SEARCH, STOPS, LookupSession
from .stop_cache import StopDetailCache

logger = logging.getLogger(__name__)

ENTER_ROUTE = "請輸入巴士號碼"
ROUTE_NOT_FOUND = "找不到此路線，請確認巴士號碼"
SEARCH_FAILED = "查詢時發生錯誤"
STOPS_FAILED = "無法載入車站列表"
ETA_FAILED = "無法取得到站時間"


@dataclass(frozen=True)
class StopRow:
    stop_id: str
    name: str
    position: int


@dataclass(frozen=True)
class StopListOutcome:
    route: str
    direction: RouteDirection
    rows: Sequence[StopRow] = ()
    error: Optional[str] = None


@dataclass(frozen=True)
class SearchOutcome:
    route: str
    directions: Sequence[RouteDirection] = ()
    stops: Optional[StopListOutcome] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class EtaOutcome:
    stop_id: str
    stop_name: str
    entries: Sequence[EtaEntry] = ()
    error: Optional[str] = None


def normalize_route(value: str) -> str:
    return value.strip().upper()


def stop_display_name(detail: StopDetail, stop_id: str) -> str:
    return detail.name_tc or detail.name_en or stop_id


async def search_route(
    session: LookupSession,
    client: KmbClient,
    cache: StopDetailCache,
    raw_route: str,
    *,
    on_start: Optional[Callable[[], Awaitable[None]]] = None,
) -> Optional[SearchOutcome]:
    """Look up a route number and list the stops of its first direction.

    Buttons rendered for the previous route stop working as soon as the
    search starts. ``on_start`` runs right after that, before the input is
    validated, so the previous panels can be taken down.
    """

    token = session.tokens.issue(SEARCH)
    session.clear_panels()
    session.route_token = None
    if on_start is not None:
        await on_start()

    route = normalize_route(raw_route or "")
    if not route:
        return SearchOutcome(route="", error=ENTER_ROUTE)

    try:
        directions = await client.get_route_directions(route)
    except KmbError as exc:
        logger.warning("Route search failed route=%s status=%s", route, exc.status_code)
        return _unless_stale(session, SEARCH, token, SearchOutcome(route=route, error=str(exc)))
    except httpx.HTTPError as exc:
        logger.warning("Route search network error route=%s error=%s", route, exc)
        return _unless_stale(session, SEARCH, token, SearchOutcome(route=route, error=SEARCH_FAILED))

    if not session.tokens.is_current(SEARCH, token):
        logger.debug("Dropping stale route search route=%s", route)
        return None

    if not directions:
        return SearchOutcome(route=route, error=ROUTE_NOT_FOUND)

    session.load_route(route, directions, token)
    stops = await load_stops(session, client, cache)
    if stops is None or not session.tokens.is_current(SEARCH, token):
        return None
    return SearchOutcome(route=route, directions=session.directions, stops=stops)


async def select_direction(
    session: LookupSession,
    client: KmbClient,
    cache: StopDetailCache,
    index: int,
) -> Optional[StopListOutcome]:
    session.select(index)
    return await load_stops(session, client, cache)


async def load_stops(
    session: LookupSession,
    client: KmbClient,
    cache: StopDetailCache,
) -> Optional[StopListOutcome]:
    """List the stops of the selected direction with their display names.

    Names are resolved one stop at a time through the stop cache.
    """

    token = session.tokens.issue(STOPS)
    session.clear_eta()

    direction = session.selected_direction
    if direction is None:
        return None

    route = session.route
    rows: list[StopRow] = []
    try:
        stops = await client.get_route_stops(route, direction.bound, direction.service_type)
        for position, stop in enumerate(sorted(stops, key=lambda s: s.sequence), start=1):
            detail = await cache.get(stop.stop_id)
            rows.append(
                StopRow(
                    stop_id=stop.stop_id,
                    name=stop_display_name(detail, stop.stop_id),
                    position=position,
                )
            )
    except KmbError as exc:
        logger.warning(
            "Stop list failed route=%s bound=%s status=%s", route, direction.bound, exc.status_code
        )
        outcome = StopListOutcome(route=route, direction=direction, error=str(exc))
        return _unless_stale(session, STOPS, token, outcome)
    except httpx.HTTPError as exc:
        logger.warning("Stop list network error route=%s error=%s", route, exc)
        outcome = StopListOutcome(route=route, direction=direction, error=STOPS_FAILED)
        return _unless_stale(session, STOPS, token, outcome)

    outcome = StopListOutcome(route=route, direction=direction, rows=tuple(rows))
    return _unless_stale(session, STOPS, token, outcome)


async def load_eta(
    session: LookupSession,
    client: KmbClient,
    cache: StopDetailCache,
    stop_id: str,
    *,
    on_loading: Optional[Callable[[], Awaitable[None]]] = None,
) -> Optional[EtaOutcome]:
    """Fetch arrival estimates for a stop on the selected direction.

    ``on_loading`` runs after the request token is taken and before the
    network call, so a placeholder can be shown straight away.
    """

    direction = session.selected_direction
    if direction is None or not session.route:
        return None

    token = session.tokens.issue(ETA)
    if on_loading is not None:
        await on_loading()

    cached = cache.peek(stop_id)
    stop_name = stop_display_name(cached, stop_id) if cached else stop_id
    route = session.route
    try:
        entries = await client.get_stop_eta(stop_id, route, direction.service_type)
    except KmbError as exc:
        logger.warning("ETA failed stop_id=%s route=%s status=%s", stop_id, route, exc.status_code)
        outcome = EtaOutcome(stop_id=stop_id, stop_name=stop_name, error=str(exc))
        return _unless_stale(session, ETA, token, outcome)
    except httpx.HTTPError as exc:
        logger.warning("ETA network error stop_id=%s route=%s error=%s", stop_id, route, exc)
        outcome = EtaOutcome(stop_id=stop_id, stop_name=stop_name, error=ETA_FAILED)
        return _unless_stale(session, ETA, token, outcome)

    outcome = EtaOutcome(stop_id=stop_id, stop_name=stop_name, entries=tuple(entries))
    return _unless_stale(session, ETA, token, outcome)


def _unless_stale(session: LookupSession, flow: str, token: int, outcome):
    if not session.tokens.is_current(flow, token):
        logger.debug("Dropping stale %s response token=%s", flow, token)
        return None
    return outcome
