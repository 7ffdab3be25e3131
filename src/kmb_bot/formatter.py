from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass
from typing import NamedTuple, Optional, Sequence

from .flows import EtaOutcome, StopListOutcome
from .models import EtaEntry, RouteDirection

STOPS_HEADER = "車站列表"
STOPS_HINT = "點擊車站以查看到站時間"
STOPS_EMPTY = "未能取得車站資料"
ETA_HEADER = "預計到站時間"
ETA_EMPTY = "暫時未有到站資料"
ETA_LOADING = "載入中..."
NO_SCHEDULED_SERVICE = "暫時未有班次"

TAB_CALLBACK = "dir"
STOP_CALLBACK = "stop"
_ACTIVE_MARK = "● "


@dataclass(frozen=True)
class Button:
    label: str
    data: str


@dataclass(frozen=True)
class Panel:
    """A rendered message: text plus rows of inline buttons."""

    text: str
    keyboard: tuple[tuple[Button, ...], ...] = ()


class CallbackAction(NamedTuple):
    kind: str
    route_token: int
    value: str


def encode_callback(kind: str, route_token: int, value: object) -> str:
    return f"{kind}|{route_token}|{value}"


def parse_callback(data: str) -> CallbackAction:
    """Split button callback data into its kind, route token, and value."""

    parts = (data or "").split("|", 2)
    if len(parts) != 3 or parts[0] not in (TAB_CALLBACK, STOP_CALLBACK):
        raise ValueError(f"Unrecognised callback data: {data!r}")
    kind, token, value = parts
    try:
        route_token = int(token)
    except ValueError:
        raise ValueError(f"Unrecognised callback data: {data!r}") from None
    return CallbackAction(kind=kind, route_token=route_token, value=value)


def tab_label(direction: RouteDirection) -> str:
    return f"{direction.orig_tc} → {direction.dest_tc}"


def render_tabs(
    directions: Sequence[RouteDirection],
    selected_index: Optional[int],
    *,
    route_token: int,
) -> tuple[tuple[Button, ...], ...]:
    rows = []
    for index, direction in enumerate(directions):
        label = tab_label(direction)
        if index == selected_index:
            label = _ACTIVE_MARK + label
        rows.append((Button(label, encode_callback(TAB_CALLBACK, route_token, index)),))
    return tuple(rows)


def render_stops_panel(
    directions: Sequence[RouteDirection],
    selected_index: Optional[int],
    outcome: StopListOutcome,
    *,
    route_token: int,
) -> Panel:
    """Render direction tabs and the stop list of the selected direction."""

    tabs = render_tabs(directions, selected_index, route_token=route_token)
    title = f"🚌 {outcome.route}"

    if outcome.error:
        return Panel(text=f"{title}\n\n{outcome.error}", keyboard=tabs)
    if not outcome.rows:
        return Panel(text=f"{title}\n\n{STOPS_EMPTY}", keyboard=tabs)

    stop_rows = tuple(
        (Button(f"{row.name}  #{row.position}", encode_callback(STOP_CALLBACK, route_token, row.stop_id)),)
        for row in outcome.rows
    )
    text = f"{title}\n\n{STOPS_HEADER}\n{STOPS_HINT}"
    return Panel(text=text, keyboard=tabs + stop_rows)


def render_eta_loading() -> Panel:
    return Panel(text=ETA_LOADING)


def render_eta_panel(
    outcome: EtaOutcome,
    *,
    tz: dt.tzinfo,
    now: Optional[dt.datetime] = None,
) -> Panel:
    if outcome.error:
        return Panel(text=outcome.error)

    header = f"{ETA_HEADER} · {outcome.stop_name}" if outcome.stop_name else ETA_HEADER
    if not outcome.entries:
        return Panel(text=f"{header}\n{ETA_EMPTY}")

    now = now or dt.datetime.now(tz)
    lines = [header]
    for entry in outcome.entries:
        text, _ = format_eta(entry.eta, tz=tz, now=now)
        lines.append(_format_eta_line(text, entry))
    return Panel(text="\n".join(lines))


def format_eta(
    eta: Optional[dt.datetime],
    *,
    tz: dt.tzinfo,
    now: dt.datetime,
) -> tuple[str, Optional[int]]:
    """Return the display text and minutes until arrival for an estimate."""

    if eta is None:
        return NO_SCHEDULED_SERVICE, None

    local = _localize(eta, tz)
    minutes = minutes_until(local, _localize(now, tz))
    return f"{local.strftime('%H:%M')}（{minutes} 分鐘）", minutes


def minutes_until(eta: dt.datetime, now: dt.datetime) -> int:
    """Whole minutes from ``now`` to ``eta``, rounded half up, never negative."""

    seconds = (eta - now).total_seconds()
    return max(0, math.floor(seconds / 60 + 0.5))


def _format_eta_line(text: str, entry: EtaEntry) -> str:
    remark = entry.remark
    return f"• {text}  {remark}" if remark else f"• {text}"


def _localize(value: dt.datetime, tz: dt.tzinfo) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)
