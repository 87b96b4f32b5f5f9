from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DISCOVERY = "discovery"
BOOKING = "booking"

Mode = Literal["discovery", "booking"]
Kind = Literal["restaurant", "appliance", "tires", "other"]

class GeoPoint(BaseModel):
    lat: float
    lng: float


class UiFlags(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    expecting_dest_phone: bool = Field(
        default=False,
        alias="expectingDestPhone",
        description="The next bare phone number in user text is the destination.",
    )


class SlotState(BaseModel):
    """Canonical booking record for one conversation."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    mode: Mode = DISCOVERY
    kind: Optional[Kind] = None
    geo_center: Optional[GeoPoint] = Field(default=None, alias="geoCenter")
    radius_miles: Optional[float] = Field(default=None, alias="radiusMiles")
    desired_start: Optional[str] = Field(default=None, alias="desiredStart")
    desired_end: Optional[str] = Field(default=None, alias="desiredEnd")
    details: Dict[str, Any] = Field(default_factory=dict)
    ui: UiFlags = Field(default_factory=UiFlags)

    def snapshot(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
