"""Pytest configuration and fixtures."""
from unittest.mock import MagicMock

import pytest

from kmb_bot.kmb_api import KmbClient
from kmb_bot.models import RouteDirection, RouteStop, StopDetail
from kmb_bot.session import LookupSession
from kmb_bot.stop_cache import StopDetailCache


def make_direction(bound="O", service_type="1", orig="尖沙咀碼頭", dest="竹園邨", route="1"):
    return RouteDirection(
        route=route,
        bound=bound,
        service_type=service_type,
        orig_tc=orig,
        dest_tc=dest,
    )


def make_stops(*stop_ids):
    return [RouteStop(stop_id=stop_id, sequence=seq) for seq, stop_id in enumerate(stop_ids, start=1)]


@pytest.fixture
def client():
    """KMB client double whose coroutine methods are AsyncMocks."""
    mock = MagicMock(spec=KmbClient)
    mock.get_route_directions.return_value = [
        make_direction("O", "1", "尖沙咀碼頭", "竹園邨"),
        make_direction("I", "1", "竹園邨", "尖沙咀碼頭"),
    ]
    mock.get_route_stops.return_value = make_stops("S1", "S2", "S3")
    mock.get_stop.side_effect = lambda stop_id: StopDetail(
        stop_id=stop_id, name_tc=f"站{stop_id}", name_en=f"Stop {stop_id}"
    )
    mock.get_stop_eta.return_value = []
    return mock


@pytest.fixture
def cache(client):
    return StopDetailCache(client)


@pytest.fixture
def session():
    return LookupSession()
