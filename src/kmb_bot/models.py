from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RouteDirection:
    route: str
    bound: str
    service_type: str
    orig_tc: str
    dest_tc: str
    orig_en: str = ""
    dest_en: str = ""


@dataclass(frozen=True)
class RouteStop:
    stop_id: str
    sequence: int
    bound: str = ""
    service_type: str = ""


@dataclass(frozen=True)
class StopDetail:
    stop_id: str
    name_tc: str = ""
    name_en: str = ""
    name_sc: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None


@dataclass(frozen=True)
class EtaEntry:
    eta: Optional[dt.datetime]
    remark_tc: str = ""
    remark_sc: str = ""
    remark_en: str = ""
    eta_seq: Optional[int] = None
    dest_tc: str = ""

    @property
    def remark(self) -> str:
        return self.remark_tc or self.remark_sc or ""
