#!/usr/bin/env python3
"""
Tests for the journey view built from a stored formations API response
"""

import copy
import json

import pytest

from formationviz.formationDecoder import TravelDirection, decode_formation, main
from formationviz.trainJourney import (
    FormationDataError,
    build_legend,
    build_legend_for_sections,
    build_stop_views,
    build_train_visualization,
    find_first_vehicle_sectors,
    load_response,
)


def _stop(uic, name, formation_string, track="7", arrival=None, departure=None):
    return {
        "scheduledStop": {
            "stopPoint": {"uic": uic, "name": name},
            "stopModifications": 0,
            "stopType": "commercial",
            "stopTime": {"arrivalTime": arrival, "departureTime": departure},
            "track": track,
        },
        "formationShort": {"formationShortString": formation_string, "vehicleGoals": []},
    }


RESPONSE = {
    "vehicleJourneyType": "passenger",
    "lastUpdate": "2026-10-19T05:00:00Z",
    "journeyMetaInformation": {"operationDate": "2026-10-19", "SJYID": "ch:1:sjyid:100001:1-001"},
    "trainMetaInformation": {"trainNumber": 1, "toCode": "11", "runs": "daily"},
    "formationsAtScheduledStops": [
        _stop(8503000, "Zürich HB", "@A[LK,1:1,2:2]@B[2:3,WR:4]", track="31", departure="2026-10-19T06:02:00"),
        _stop(8507000, "Bern", "@D[2:3,WR:4]@C[1:1,2:2,LK]", arrival="2026-10-19T06:58:00"),
        _stop(8500010, "Basel SBB", "   "),
    ],
    "formations": [
        {
            "metaInformation": {},
            "formationVehicles": [
                {
                    "vehicleIdentifier": {},
                    "position": 1,
                    "number": 1,
                    "vehicleProperties": {},
                    "formationVehicleAtScheduledStops": [
                        {"stopPoint": {"uic": 8503000, "name": "Zürich HB"}, "sectors": "A"},
                        {"stopPoint": {"uic": 8507000, "name": "Bern"}, "sectors": "C"},
                    ],
                }
            ],
        }
    ],
}


def test_stop_views_skip_stops_without_formation():
    stops = build_stop_views(RESPONSE)
    assert [stop.name for stop in stops] == ["Zürich HB", "Bern"]
    assert stops[0].track == "31"
    assert stops[0].departure_time == "2026-10-19T06:02:00"
    assert stops[0].arrival_time is None
    assert all(stop.has_sectors for stop in stops)


def test_stop_views_travel_direction():
    stops = build_stop_views(RESPONSE)
    assert stops[0].travel_direction == TravelDirection.LEFT
    assert stops[1].travel_direction == TravelDirection.RIGHT


def test_direction_unknown_without_vehicle_data():
    response = copy.deepcopy(RESPONSE)
    del response["formations"]
    stops = build_stop_views(response)
    assert [stop.travel_direction for stop in stops] == [TravelDirection.UNKNOWN] * 2


def test_first_vehicle_sectors_lookup():
    assert find_first_vehicle_sectors(RESPONSE, 8507000) == "C"
    assert find_first_vehicle_sectors(RESPONSE, 1234567) is None
    assert find_first_vehicle_sectors({}, 8507000) is None


def test_visualization_for_first_stop():
    visualization = build_train_visualization(RESPONSE)
    assert visualization.train_number == "1"
    assert visualization.evu == "11"
    assert visualization.operation_date == "2026-10-19"
    assert visualization.current_stop == "Zürich HB"
    assert [s.sector for s in visualization.sections] == ["A", "B"]
    assert [w.position for w in visualization.wagons] == [0, 1, 2, 3, 4]


def test_visualization_for_selected_stop():
    visualization = build_train_visualization(RESPONSE, stop_index=1)
    assert visualization.current_stop == "Bern"
    assert visualization.current_stop_index == 1
    assert [s.sector for s in visualization.sections] == ["D", "C"]
    assert visualization.wagons[-1].type == "locomotive"


def test_visualization_out_of_range_stop_falls_back():
    visualization = build_train_visualization(RESPONSE, stop_index=9)
    assert visualization.current_stop == "Zürich HB"
    assert visualization.current_stop_index == 0


def test_visualization_missing_data():
    assert build_train_visualization({}) is None
    assert build_train_visualization({"formationsAtScheduledStops": "broken"}) is None
    assert build_stop_views({"formationsAtScheduledStops": [None, 5, {}]}) == []


def test_visualization_to_dict():
    data = build_train_visualization(RESPONSE).to_dict()
    assert data["currentStop"] == "Zürich HB"
    assert data["stops"][1]["travelDirection"] == "right"
    assert data["stops"][0]["hasSectors"] is True
    assert data["sections"][1]["wagons"][1]["attributes"][0]["code"] == "WR"
    json.dumps(data)


def test_legend_for_stop():
    legend = build_legend(build_train_visualization(RESPONSE))
    assert [item.label for item in legend.wagon_types] == ["Locomotive", "1st/2nd Class Coach"]
    assert [item.label for item in legend.accessibility] == ["Entry with Steps"]
    assert [item.label for item in legend.facilities] == ["Platform sectors", "Restaurant"]
    assert legend.facilities[0].codes == ("A", "B")


def test_legend_closed_no_passage_and_low_floor():
    sections = decode_formation("@C[-2:1,(1:2#NF)]")
    legend = build_legend_for_sections(sections, has_sectors=True)
    labels = [item.label for item in legend.wagon_types]
    assert "Closed Coach" in labels
    assert "No passage between cars" in labels
    assert [item.label for item in legend.accessibility] == ["Low Floor Entry", "Entry with Steps"]
    assert legend.facilities[0].label == "Platform sector"
    assert legend.facilities[0].codes == ("C",)


def test_legend_skips_unserviced_restaurant():
    sections = decode_formation("@A[%WR:1,FA:2]")
    legend = build_legend_for_sections(sections, has_sectors=False)
    assert [item.label for item in legend.facilities] == []

    sections = decode_formation("[%WR:1,FA:2]")
    legend = build_legend_for_sections(sections, has_sectors=False)
    assert [item.label for item in legend.facilities] == ["Family Zone"]


def test_load_response_errors(tmp_path):
    not_object = tmp_path / "list.json"
    not_object.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(FormationDataError):
        load_response(not_object)

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(FormationDataError):
        load_response(broken)

    with pytest.raises(FormationDataError):
        load_response(tmp_path / "missing.json")


def test_main_with_response_file(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    response_path = tmp_path / "formations_full.json"
    response_path.write_text(json.dumps(RESPONSE), encoding="utf-8")

    with pytest.raises(SystemExit) as exc:
        main(["--response", str(response_path), "--stop", "1", "--json"])
    assert exc.value.code == 0

    data = json.loads(capsys.readouterr().out)
    assert data["currentStop"] == "Bern"
    assert [s["sector"] for s in data["sections"]] == ["D", "C"]


def test_main_with_unreadable_response(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(SystemExit) as exc:
        main(["--response", str(tmp_path / "missing.json")])
    assert exc.value.code == 1
