from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Optional, Sequence
from urllib.parse import quote

import httpx

from .config import KmbSettings
from .models import EtaEntry, RouteDirection, RouteStop, StopDetail

logger = logging.getLogger(__name__)

# The route endpoint reports bounds as single letters; route-stop wants words.
_DIRECTION_WORDS = {"O": "outbound", "I": "inbound"}


class KmbError(RuntimeError):
    """Raised when the KMB API returns an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class KmbClient:
    """Async client for the KMB real-time arrival open data API."""

    def __init__(
        self,
        settings: KmbSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/") + "/",
            timeout=10.0,
            headers={"Accept": "application/json"},
            follow_redirects=True,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "KmbClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def fetch_json(self, path: str) -> Any:
        """GET a path below the API base and return the decoded JSON body.

        Non-success statuses raise :class:`KmbError` carrying the status code.
        Transport failures (``httpx.HTTPError``) are left to the caller.
        """

        response = await self._client.get(path)
        logger.debug("GET %s -> %s", path, response.status_code)
        if response.status_code >= 400:
            raise KmbError(f"無法取得資料 ({response.status_code})", response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            content_type = response.headers.get("content-type", "unknown")
            raise KmbError(
                f"無法解析資料 (status {response.status_code}, content-type {content_type})"
            ) from exc

    async def get_route_directions(self, route: str) -> Sequence[RouteDirection]:
        """Return every bound/service type pair operated under a route number."""

        payload = await self.fetch_json(f"route/{_segment(route)}")
        return [self._parse_direction(item, route) for item in _data_list(payload)]

    async def get_route_stops(
        self, route: str, bound: str, service_type: str
    ) -> Sequence[RouteStop]:
        direction = _DIRECTION_WORDS.get(bound.upper(), bound)
        path = f"route-stop/{_segment(route)}/{_segment(direction)}/{_segment(service_type)}"
        payload = await self.fetch_json(path)
        return [self._parse_route_stop(item) for item in _data_list(payload)]

    async def get_stop(self, stop_id: str) -> StopDetail:
        payload = await self.fetch_json(f"stop/{_segment(stop_id)}")
        data = payload.get("data") if isinstance(payload, dict) else None
        return self._parse_stop(data if isinstance(data, dict) else {}, stop_id)

    async def get_stop_eta(
        self, stop_id: str, route: str, service_type: str
    ) -> Sequence[EtaEntry]:
        """Return arrival estimates for a route at a stop, in API order."""

        path = f"stop-eta/{_segment(stop_id)}/{_segment(route)}/{_segment(service_type)}"
        payload = await self.fetch_json(path)
        return [self._parse_eta(item) for item in _data_list(payload)]

    @staticmethod
    def _parse_direction(data: dict[str, Any], route: str) -> RouteDirection:
        return RouteDirection(
            route=data.get("route") or route,
            bound=data.get("bound", ""),
            service_type=str(data.get("service_type", "")),
            orig_tc=data.get("orig_tc", ""),
            dest_tc=data.get("dest_tc", ""),
            orig_en=data.get("orig_en", ""),
            dest_en=data.get("dest_en", ""),
        )

    @staticmethod
    def _parse_route_stop(data: dict[str, Any]) -> RouteStop:
        return RouteStop(
            stop_id=data.get("stop", ""),
            sequence=_to_int(data.get("seq")) or 0,
            bound=data.get("bound", ""),
            service_type=str(data.get("service_type", "")),
        )

    @staticmethod
    def _parse_stop(data: dict[str, Any], stop_id: str) -> StopDetail:
        return StopDetail(
            stop_id=data.get("stop") or stop_id,
            name_tc=data.get("name_tc") or "",
            name_en=data.get("name_en") or "",
            name_sc=data.get("name_sc") or "",
            latitude=_to_float(data.get("lat")),
            longitude=_to_float(data.get("long")),
        )

    @staticmethod
    def _parse_eta(data: dict[str, Any]) -> EtaEntry:
        return EtaEntry(
            eta=_parse_timestamp(data.get("eta")),
            remark_tc=data.get("rmk_tc") or "",
            remark_sc=data.get("rmk_sc") or "",
            remark_en=data.get("rmk_en") or "",
            eta_seq=_to_int(data.get("eta_seq")),
            dest_tc=data.get("dest_tc") or "",
        )


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def _data_list(payload: Any) -> list[dict[str, Any]]:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def _parse_timestamp(value: Any) -> Optional[dt.datetime]:
    if not value or not isinstance(value, str):
        return None
    try:
        return dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Ignoring unparseable ETA timestamp %r", value)
        return None


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
