"""Route search, stop list and ETA flows against a mocked KMB client."""
import asyncio
import datetime as dt

import httpx
import pytest

from conftest import make_direction, make_stops
from kmb_bot.flows import (
    ENTER_ROUTE,
    ETA_FAILED,
    ROUTE_NOT_FOUND,
    SEARCH_FAILED,
    STOPS_FAILED,
    load_eta,
    load_stops,
    normalize_route,
    search_route,
    select_direction,
)
from kmb_bot.kmb_api import KmbError
from kmb_bot.models import EtaEntry, StopDetail
from kmb_bot.session import SEARCH

HKT = dt.timezone(dt.timedelta(hours=8))


# --- Route search ---


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["", "   ", "\t\n"])
async def test_blank_route_issues_no_request(client, cache, session, raw):
    outcome = await search_route(session, client, cache, raw)

    assert outcome.error == ENTER_ROUTE
    client.get_route_directions.assert_not_awaited()


@pytest.mark.asyncio
async def test_route_is_trimmed_and_upper_cased(client, cache, session):
    await search_route(session, client, cache, " 1a ")
    await search_route(session, client, cache, "1A")

    calls = [c.args for c in client.get_route_directions.await_args_list]
    assert calls == [("1A",), ("1A",)]
    assert normalize_route(" 1a ") == normalize_route("1A") == "1A"


@pytest.mark.asyncio
async def test_route_not_found(client, cache, session):
    client.get_route_directions.return_value = []

    outcome = await search_route(session, client, cache, "999X")

    assert outcome.error == ROUTE_NOT_FOUND
    assert outcome.directions == ()
    assert session.route == ""
    client.get_route_stops.assert_not_awaited()


@pytest.mark.asyncio
async def test_search_http_error_message_is_shown(client, cache, session):
    client.get_route_directions.side_effect = KmbError("無法取得資料 (500)", 500)

    outcome = await search_route(session, client, cache, "1")

    assert outcome.error == "無法取得資料 (500)"


@pytest.mark.asyncio
async def test_search_network_error(client, cache, session):
    client.get_route_directions.side_effect = httpx.ConnectError("dns")

    outcome = await search_route(session, client, cache, "1")

    assert outcome.error == SEARCH_FAILED


@pytest.mark.asyncio
async def test_search_loads_first_direction_stops(client, cache, session):
    outcome = await search_route(session, client, cache, "1")

    assert outcome.error is None
    assert len(outcome.directions) == 2
    assert session.selected_index == 0
    assert session.tokens.is_current(SEARCH, session.route_token)
    client.get_route_stops.assert_awaited_once_with("1", "O", "1")
    assert [(r.stop_id, r.name, r.position) for r in outcome.stops.rows] == [
        ("S1", "站S1", 1),
        ("S2", "站S2", 2),
        ("S3", "站S3", 3),
    ]


@pytest.mark.asyncio
async def test_failed_search_keeps_previous_route(client, cache, session):
    await search_route(session, client, cache, "1")
    client.get_route_directions.return_value = []

    await search_route(session, client, cache, "2")

    assert session.route == "1"
    assert len(session.directions) == 2


@pytest.mark.asyncio
async def test_search_expires_previous_route_buttons_before_fetching(client, cache, session):
    await search_route(session, client, cache, "1")
    seen_tokens = []

    async def on_start():
        seen_tokens.append(session.route_token)

    async def directions_for(route):
        seen_tokens.append(session.route_token)
        return []

    client.get_route_directions.side_effect = directions_for

    await search_route(session, client, cache, "2", on_start=on_start)

    assert seen_tokens == [None, None]
    assert session.route_token is None


@pytest.mark.asyncio
async def test_blank_search_still_runs_start_callback(client, cache, session):
    started = []

    async def on_start():
        started.append(True)

    outcome = await search_route(session, client, cache, "  ", on_start=on_start)

    assert outcome.error == ENTER_ROUTE
    assert started == [True]


# --- Stop list ---


@pytest.mark.asyncio
async def test_load_stops_without_selection_is_noop(client, cache, session):
    assert await load_stops(session, client, cache) is None
    client.get_route_stops.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_stop_list(client, cache, session):
    session.load_route("1", [make_direction()], token=1)
    client.get_route_stops.return_value = []

    outcome = await load_stops(session, client, cache)

    assert outcome.rows == ()
    assert outcome.error is None


@pytest.mark.asyncio
async def test_stop_names_fall_back_to_english_then_id(client, cache, session):
    session.load_route("1", [make_direction()], token=1)
    details = {
        "S1": StopDetail("S1", name_tc="", name_en="STAR FERRY"),
        "S2": StopDetail("S2"),
    }
    client.get_stop.side_effect = details.get
    client.get_route_stops.return_value = make_stops("S1", "S2")

    outcome = await load_stops(session, client, cache)

    assert [r.name for r in outcome.rows] == ["STAR FERRY", "S2"]


@pytest.mark.asyncio
async def test_stops_follow_sequence_order(client, cache, session):
    session.load_route("1", [make_direction()], token=1)
    stops = make_stops("A", "B", "C")
    client.get_route_stops.return_value = list(reversed(stops))

    outcome = await load_stops(session, client, cache)

    assert [r.stop_id for r in outcome.rows] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_stop_list_errors_are_inline(client, cache, session):
    session.load_route("1", [make_direction()], token=1)
    client.get_route_stops.side_effect = httpx.ReadTimeout("slow")

    outcome = await load_stops(session, client, cache)
    assert outcome.error == STOPS_FAILED

    client.get_route_stops.side_effect = None
    client.get_stop.side_effect = KmbError("無法取得資料 (404)", 404)
    outcome = await load_stops(session, client, cache)
    assert outcome.error == "無法取得資料 (404)"


@pytest.mark.asyncio
async def test_select_direction_refetches_for_its_bound(client, cache, session):
    await search_route(session, client, cache, "1")
    session.directions = (make_direction("O", "1"), make_direction("I", "3"))

    outcome = await select_direction(session, client, cache, 1)

    assert session.selected_index == 1
    assert outcome.direction.bound == "I"
    client.get_route_stops.assert_awaited_with("1", "I", "3")


@pytest.mark.asyncio
async def test_stale_stop_list_is_dropped(client, cache, session):
    session.load_route("1", [make_direction("O"), make_direction("I")], token=1)
    release = asyncio.Event()

    async def stops_for(route, bound, service_type):
        if bound == "O":
            await release.wait()
        return make_stops(f"{bound}1")

    client.get_route_stops.side_effect = stops_for

    slow = asyncio.create_task(load_stops(session, client, cache))
    await asyncio.sleep(0)
    fresh = await select_direction(session, client, cache, 1)
    release.set()

    assert fresh.rows[0].stop_id == "I1"
    assert await slow is None


# --- ETA ---


@pytest.mark.asyncio
async def test_eta_requires_selected_direction(client, cache, session):
    assert await load_eta(session, client, cache, "S1") is None
    client.get_stop_eta.assert_not_awaited()


@pytest.mark.asyncio
async def test_eta_uses_selected_service_type(client, cache, session):
    session.load_route("1", [make_direction("O", "2")], token=1)
    entries = [
        EtaEntry(eta=dt.datetime(2024, 5, 1, 10, 5, tzinfo=HKT), eta_seq=1),
        EtaEntry(eta=dt.datetime(2024, 5, 1, 10, 1, tzinfo=HKT), eta_seq=2),
    ]
    client.get_stop_eta.return_value = entries
    await cache.get("S1")

    outcome = await load_eta(session, client, cache, "S1")

    client.get_stop_eta.assert_awaited_once_with("S1", "1", "2")
    assert list(outcome.entries) == entries
    assert outcome.stop_name == "站S1"


@pytest.mark.asyncio
async def test_eta_loading_callback_runs_before_request(client, cache, session):
    session.load_route("1", [make_direction()], token=1)
    order = []

    async def on_loading():
        order.append("loading")

    async def fetch(*args):
        order.append("fetch")
        return []

    client.get_stop_eta.side_effect = fetch

    outcome = await load_eta(session, client, cache, "S1", on_loading=on_loading)

    assert order == ["loading", "fetch"]
    assert outcome.entries == ()
    assert outcome.stop_name == "S1"
    client.get_stop.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, message",
    [(KmbError("無法取得資料 (502)", 502), "無法取得資料 (502)"), (httpx.ConnectError("down"), ETA_FAILED)],
)
async def test_eta_errors(client, cache, session, error, message):
    session.load_route("1", [make_direction()], token=1)
    client.get_stop_eta.side_effect = error

    outcome = await load_eta(session, client, cache, "S1")

    assert outcome.error == message


@pytest.mark.asyncio
async def test_slow_eta_does_not_overwrite_newer_stop(client, cache, session):
    session.load_route("1", [make_direction()], token=1)
    release = asyncio.Event()

    async def eta_for(stop_id, route, service_type):
        if stop_id == "OLD":
            await release.wait()
        return [EtaEntry(eta=None, remark_tc=stop_id)]

    client.get_stop_eta.side_effect = eta_for

    slow = asyncio.create_task(load_eta(session, client, cache, "OLD"))
    await asyncio.sleep(0)
    fresh = await load_eta(session, client, cache, "NEW")
    release.set()

    assert fresh.entries[0].remark == "NEW"
    assert await slow is None


@pytest.mark.asyncio
async def test_new_search_discards_pending_eta(client, cache, session):
    session.load_route("1", [make_direction()], token=1)
    release = asyncio.Event()

    async def eta_for(*args):
        await release.wait()
        return []

    client.get_stop_eta.side_effect = eta_for

    pending = asyncio.create_task(load_eta(session, client, cache, "S1"))
    await asyncio.sleep(0)
    await search_route(session, client, cache, "2")
    release.set()

    assert await pending is None
