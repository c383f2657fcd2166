"""
Journey view built on top of the formation decoder.

Takes an already fetched response of the formations API (the
``formations_full`` JSON document) and derives:
- the list of stops that carry a formation string, with platform-sector
  availability and travel direction per stop
- the decoded sections for the selected stop
- a textual legend of what is present in the decoded formation
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Optional, Tuple

from formationviz.formationDecoder import (
    TrainSection,
    TrainWagon,
    TravelDirection,
    WagonStatus,
    decode_formation,
    resolve_travel_direction,
)

# Attribute codes shown under facilities, FA is an alias of the family zone
FACILITIES_MAPPING = MappingProxyType(
    {
        "BHP": "Wheelchair Spaces",
        "VH": "Bike Hooks",
        "VR": "Bike Hooks Reservation Required",
        "BZ": "Business Zone",
        "FZ": "Family Zone",
        "FA": "Family Zone",
        "LA": "Luggage",
        "WR": "Restaurant",
        "WL": "Sleeping Compartments",
        "CC": "Couchette Compartments",
        "KW": "Stroller Platform",
    }
)

LOW_FLOOR_CODES = ("NF", "KW")


class FormationDataError(ValueError):
    """Raised when a stored API response cannot be used at all."""


@dataclass
class StopView:
    """One scheduled stop that has formation data."""

    name: str
    uic: Optional[int]
    arrival_time: Optional[str]
    departure_time: Optional[str]
    track: str
    has_sectors: bool
    travel_direction: TravelDirection
    formation_string: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "uic": self.uic,
            "arrivalTime": self.arrival_time,
            "departureTime": self.departure_time,
            "track": self.track,
            "hasSectors": self.has_sectors,
            "travelDirection": self.travel_direction.value,
        }


@dataclass
class TrainVisualization:
    """Decoded train at a selected stop, plus the journey's stop list."""

    train_number: str
    operation_date: str
    evu: str
    current_stop: str
    current_stop_index: int
    stops: List[StopView] = field(default_factory=list)
    sections: List[TrainSection] = field(default_factory=list)

    @property
    def wagons(self) -> List[TrainWagon]:
        return [wagon for section in self.sections for wagon in section.wagons]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trainNumber": self.train_number,
            "operationDate": self.operation_date,
            "evu": self.evu,
            "currentStop": self.current_stop,
            "stops": [stop.to_dict() for stop in self.stops],
            "sections": [section.to_dict() for section in self.sections],
        }


@dataclass
class LegendItem:
    label: str
    style: str = ""
    codes: Tuple[str, ...] = ()

    def describe(self) -> str:
        if self.codes:
            return f"{self.label} ({'-'.join(self.codes)})"
        return self.label


@dataclass
class Legend:
    wagon_types: List[LegendItem] = field(default_factory=list)
    accessibility: List[LegendItem] = field(default_factory=list)
    facilities: List[LegendItem] = field(default_factory=list)


def _get(data: Any, *keys, default=None):
    """Walk nested dicts/lists, returning default on any missing step."""
    current = data
    for key in keys:
        if isinstance(current, dict) and key in current:
            current = current[key]
        elif isinstance(current, list) and isinstance(key, int) and -len(current) <= key < len(current):
            current = current[key]
        else:
            return default
    return current if current is not None else default


def load_response(response_path: Path) -> Dict[str, Any]:
    """Read a stored formations API response from disk."""
    try:
        with open(response_path, "r", encoding="utf-8") as f:
            response = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise FormationDataError(f"Failed to read response file {response_path}: {e}") from e

    if not isinstance(response, dict):
        raise FormationDataError(f"Response file {response_path} does not contain a JSON object")
    return response


def find_first_vehicle_sectors(response: Dict[str, Any], uic: Optional[int]) -> Optional[str]:
    """Sector field of the first formation vehicle at the stop with this UIC code."""
    if uic is None:
        return None
    stops_of_vehicle = _get(
        response, "formations", 0, "formationVehicles", 0, "formationVehicleAtScheduledStops", default=[]
    )
    if not isinstance(stops_of_vehicle, list):
        return None

    for vehicle_stop in stops_of_vehicle:
        if _get(vehicle_stop, "stopPoint", "uic") == uic:
            sectors = _get(vehicle_stop, "sectors")
            return sectors if isinstance(sectors, str) else None
    return None


def build_stop_views(response: Dict[str, Any]) -> List[StopView]:
    """Build the stop list, keeping only stops with a formation string."""
    formation_stops = _get(response, "formationsAtScheduledStops", default=[])
    if not isinstance(formation_stops, list):
        return []

    stops = []
    for formation_stop in formation_stops:
        formation_string = _get(formation_stop, "formationShort", "formationShortString", default="")
        if not isinstance(formation_string, str) or not formation_string.strip():
            continue

        uic = _get(formation_stop, "scheduledStop", "stopPoint", "uic")
        vehicle_sectors = find_first_vehicle_sectors(response, uic)
        travel_direction = resolve_travel_direction(formation_string, vehicle_sectors)

        stops.append(
            StopView(
                name=_get(formation_stop, "scheduledStop", "stopPoint", "name", default=""),
                uic=uic,
                arrival_time=_get(formation_stop, "scheduledStop", "stopTime", "arrivalTime"),
                departure_time=_get(formation_stop, "scheduledStop", "stopTime", "departureTime"),
                track=_get(formation_stop, "scheduledStop", "track", default=""),
                has_sectors="@" in formation_string,
                travel_direction=travel_direction,
                formation_string=formation_string,
            )
        )

    logging.debug(f"STOPS: {len(stops)} of {len(formation_stops)} stops carry formation data")
    return stops


def build_train_visualization(
    response: Dict[str, Any], stop_index: int = 0
) -> Optional[TrainVisualization]:
    """
    Decode the formation at the selected stop.

    Returns None when the response holds no stop with formation data.
    An out-of-range stop index falls back to the first stop.
    """
    stops = build_stop_views(response)
    if not stops:
        return None

    if stop_index < 0 or stop_index >= len(stops):
        logging.debug(f"STOPS: index {stop_index} out of range, using 0")
        stop_index = 0

    current = stops[stop_index]
    train_number = _get(response, "trainMetaInformation", "trainNumber", default="")

    return TrainVisualization(
        train_number=str(train_number),
        operation_date=_get(response, "journeyMetaInformation", "operationDate", default=""),
        evu=str(_get(response, "trainMetaInformation", "toCode", default="")),
        current_stop=current.name,
        current_stop_index=stop_index,
        stops=stops,
        sections=decode_formation(current.formation_string),
    )


def _sector_range_item(sections: List[TrainSection]) -> Optional[LegendItem]:
    sectors = sorted(s.sector for s in sections if s.sector and s.sector != "N/A")
    if not sectors:
        return None
    if sectors[0] == sectors[-1]:
        return LegendItem("Platform sector", style="sector", codes=(sectors[0],))
    return LegendItem("Platform sectors", style="sector-range", codes=(sectors[0], sectors[-1]))


def build_legend_for_sections(sections: List[TrainSection], has_sectors: bool) -> Legend:
    """Legend entries for everything present in the decoded sections."""
    wagons = [wagon for section in sections for wagon in section.wagons]
    legend = Legend()

    if any(wagon.is_locomotive for wagon in wagons):
        legend.wagon_types.append(LegendItem("Locomotive", style="locomotive"))
    if any(wagon.classes for wagon in wagons):
        legend.wagon_types.append(LegendItem("1st/2nd Class Coach", style="mixed"))
    if any(WagonStatus.CLOSED in wagon.status_codes for wagon in wagons):
        legend.wagon_types.append(LegendItem("Closed Coach", style="closed"))
    if any(
        (wagon.no_access_to_previous or wagon.no_access_to_next) and not wagon.is_locomotive
        for wagon in wagons
    ):
        legend.wagon_types.append(LegendItem("No passage between cars", style="no-passage"))

    def has_low_floor(wagon: TrainWagon) -> bool:
        return any(code in LOW_FLOOR_CODES for code in wagon.attribute_codes)

    if any(has_low_floor(wagon) for wagon in wagons):
        legend.accessibility.append(LegendItem("Low Floor Entry", style="low-floor-entry"))
    if any(not wagon.is_locomotive and not has_low_floor(wagon) for wagon in wagons):
        legend.accessibility.append(LegendItem("Entry with Steps", style="entry-with-steps"))

    if has_sectors:
        sector_item = _sector_range_item(sections)
        if sector_item:
            legend.facilities.append(sector_item)

    # dict keeps first-seen order
    present: Dict[str, None] = {}
    for wagon in wagons:
        for code in wagon.attribute_codes:
            if code not in FACILITIES_MAPPING:
                continue
            # An unserviced restaurant offers nothing
            if code == "WR" and WagonStatus.UNSERVICED in wagon.status_codes:
                continue
            present[code] = None

    for code in present:
        legend.facilities.append(LegendItem(FACILITIES_MAPPING[code], style="facility", codes=(code,)))

    return legend


def build_legend(visualization: TrainVisualization) -> Legend:
    """Legend for the selected stop of a visualization."""
    has_sectors = False
    if 0 <= visualization.current_stop_index < len(visualization.stops):
        has_sectors = visualization.stops[visualization.current_stop_index].has_sectors
    return build_legend_for_sections(visualization.sections, has_sectors)
