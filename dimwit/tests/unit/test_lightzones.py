#!/usr/bin/env python3
"""Tests for zone configuration loading and the zone registry."""

import json
from datetime import date, time

import pytest

from lightzones import (
    ActivationWindow,
    DependentZone,
    ZoneDefinition,
    ZoneRegistry,
    load_zone_directory,
    load_zone_file,
    parse_zone_document,
)
from timeframes import LightLevels
from twilight import ConfigurationError, InvalidTimeLiteral, Twilight, UnknownAnchor


def make_twilight(sunrise=time(7, 0), day=date(2017, 2, 12)):
    return Twilight(day, time(6, 30), sunrise, time(12, 30), time(18, 30), time(19, 0))


def zone_dict(device_id="11", **extra):
    data = {
        "deviceId": device_id,
        "timeFrames": [
            {"endTime": "06:00", "lowLevel": 10, "highLevel": 35},
            {"endTime": "08:00", "lowLevel": 30, "highLevel": 60},
            {"endTime": "13:00", "lowLevel": 60, "highLevel": 85},
            {"endTime": "20:00", "lowLevel": 30, "highLevel": 60},
            {"endTime": "24:00", "lowLevel": 1, "highLevel": 35},
        ],
    }
    data.update(extra)
    return data


ZONE_YAML = """
zones:
  - deviceId: "11"
    timeFrames:
      - {endTime: "sunrise:-30", lowLevel: 10, highLevel: 35}
      - {endTime: "24:00", lowLevel: 1, highLevel: 35}
    subZones:
      - deviceId: "12"
        windows:
          - {startTime: "00:00", endTime: "twilightBegin"}
  - deviceId: 12
    timeFrames:
      - {endTime: "24:00", lowLevel: 5, highLevel: 15}
"""


class TestZoneDefinition:
    """Validation of zone documents."""

    def test_valid_zone(self):
        definition = ZoneDefinition.from_dict(zone_dict())
        assert definition.device_id == "11"
        assert len(definition.time_frames) == 5
        assert definition.sub_zones == ()

    def test_levels_coerced(self):
        data = zone_dict()
        data["timeFrames"][0]["lowLevel"] = "12"
        definition = ZoneDefinition.from_dict(data)
        assert definition.time_frames[0][1] == 12

    def test_device_id_coerced(self):
        assert ZoneDefinition.from_dict(zone_dict(device_id=11)).device_id == "11"

    def test_missing_time_frames(self):
        with pytest.raises(ConfigurationError) as exc:
            ZoneDefinition.from_dict({"deviceId": "11"})
        assert "'11'" in str(exc.value)

    def test_empty_time_frames(self):
        with pytest.raises(ConfigurationError):
            ZoneDefinition.from_dict({"deviceId": "11", "timeFrames": []})

    def test_negative_level(self):
        data = zone_dict()
        data["timeFrames"][1]["highLevel"] = -5
        with pytest.raises(ConfigurationError):
            ZoneDefinition.from_dict(data)

    def test_unknown_anchor(self):
        data = zone_dict()
        data["timeFrames"][0]["endTime"] = "blahblah:30"
        with pytest.raises(UnknownAnchor) as exc:
            ZoneDefinition.from_dict(data)
        assert "blahblah" in str(exc.value)

    def test_bad_hour(self):
        data = zone_dict()
        data["timeFrames"][0]["endTime"] = "78:30"
        with pytest.raises(InvalidTimeLiteral) as exc:
            ZoneDefinition.from_dict(data)
        assert "hour" in str(exc.value)

    def test_bad_window_endpoint(self):
        data = zone_dict(subZones=[{"deviceId": "12", "windows": [{"startTime": ":30", "endTime": "10:00"}]}])
        with pytest.raises(UnknownAnchor):
            ZoneDefinition.from_dict(data)

    def test_sub_zone_without_windows(self):
        definition = ZoneDefinition.from_dict(zone_dict(subZones=[{"deviceId": "12"}]))
        assert definition.sub_zones[0].device_id == "12"
        assert definition.sub_zones[0].windows == ()

    def test_build_resolves_sub_zones(self):
        data = zone_dict(subZones=[{"deviceId": "12", "windows": [{"startTime": "sunset", "endTime": "24:00"}]}])
        zone = ZoneDefinition.from_dict(data).build(make_twilight())
        window = zone.sub_zones[0].windows[0]
        assert window.start == time(18, 30)
        assert window.end == time.max
        assert window.start_spec == "sunset"


class TestActivationWindows:

    def test_window_is_exclusive(self):
        window = ActivationWindow("11:00", "12:00", time(11, 0), time(12, 0))
        assert window.contains(time(11, 30))
        assert not window.contains(time(11, 0))
        assert not window.contains(time(12, 0))

    def test_any_window_activates(self):
        sub = DependentZone("12", (
            ActivationWindow("00:00", "06:00", time(0, 0), time(6, 0)),
            ActivationWindow("20:00", "24:00", time(20, 0), time.max),
        ))
        assert sub.is_active(time(3, 0))
        assert sub.is_active(time(22, 0))
        assert not sub.is_active(time(12, 0))

    def test_no_windows_never_active(self):
        assert not DependentZone("12").is_active(time(12, 0))


class TestDocuments:
    """JSON and YAML zone documents."""

    def test_single_json_zone(self):
        definitions = parse_zone_document(json.dumps(zone_dict()))
        assert [d.device_id for d in definitions] == ["11"]

    def test_json_list(self):
        text = json.dumps([zone_dict("11"), zone_dict("12")])
        assert [d.device_id for d in parse_zone_document(text)] == ["11", "12"]

    def test_yaml_zones_key(self):
        definitions = parse_zone_document(ZONE_YAML, "yaml")
        assert [d.device_id for d in definitions] == ["11", "12"]
        assert definitions[0].sub_zones[0].windows[0][1].anchor == "twilightBegin"

    def test_unparseable(self):
        with pytest.raises(ConfigurationError):
            parse_zone_document("{not json")

    def test_wrong_shape(self):
        with pytest.raises(ConfigurationError):
            parse_zone_document('"just a string"')

    def test_load_file_prefixes_path(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text(json.dumps({"deviceId": "11"}))
        with pytest.raises(ConfigurationError) as exc:
            load_zone_file(str(path))
        assert "broken.json" in str(exc.value)

    def test_load_directory(self, tmp_path):
        (tmp_path / "a.json").write_text(json.dumps(zone_dict("11")))
        (tmp_path / "b.yaml").write_text(ZONE_YAML.replace('"11"', '"21"').replace("12", "22"))
        (tmp_path / "notes.txt").write_text("ignored")

        definitions = load_zone_directory(str(tmp_path))
        assert [d.device_id for d in definitions] == ["11", "21", "22"]

    def test_duplicate_ids_rejected(self, tmp_path):
        (tmp_path / "a.json").write_text(json.dumps(zone_dict("11")))
        (tmp_path / "b.json").write_text(json.dumps(zone_dict("11")))
        with pytest.raises(ConfigurationError) as exc:
            load_zone_directory(str(tmp_path))
        assert "Duplicate" in str(exc.value)


class TestZoneRegistry:
    """Registration and per-day rebuilds."""

    def setup_method(self):
        self.registry = ZoneRegistry(make_twilight(), [ZoneDefinition.from_dict(zone_dict())])

    def test_lookup(self):
        assert "11" in self.registry
        assert self.registry.zone("11").device_id == "11"
        assert self.registry.zone("99") is None
        assert len(self.registry) == 1

    def test_zone_calculates(self):
        assert self.registry.zone("11").calculate(time(11, 20)) == LightLevels(50, 85)

    def test_register_fails_fast(self):
        data = zone_dict("12")
        data["timeFrames"][1]["endTime"] = "05:00"
        with pytest.raises(ConfigurationError):
            self.registry.register(ZoneDefinition.from_dict(data))
        assert "12" not in self.registry

    def test_remove(self):
        assert self.registry.remove("11")
        assert not self.registry.remove("11")
        assert self.registry.zone("11") is None

    def test_rebuild_moves_anchored_frames(self):
        data = {
            "deviceId": "sun",
            "timeFrames": [
                {"endTime": "sunrise", "lowLevel": 5, "highLevel": 20},
                {"endTime": "24:00", "lowLevel": 30, "highLevel": 60},
            ],
        }
        self.registry.register(ZoneDefinition.from_dict(data))
        self.registry.rebuild(make_twilight(sunrise=time(6, 45), day=date(2017, 2, 13)))

        assert self.registry.zone("sun").schedule[0].end_time == time(6, 45)
        assert self.registry.twilight.date == date(2017, 2, 13)

    def test_rebuild_keeps_previous_on_failure(self):
        data = {
            "deviceId": "sun",
            "timeFrames": [
                {"endTime": "sunrise", "lowLevel": 5, "highLevel": 20},
                {"endTime": "07:30", "lowLevel": 30, "highLevel": 60},
                {"endTime": "24:00", "lowLevel": 30, "highLevel": 60},
            ],
        }
        self.registry.register(ZoneDefinition.from_dict(data))
        before = self.registry.zone("sun")

        self.registry.rebuild(make_twilight(sunrise=time(8, 0)))

        assert self.registry.zone("sun") is before
        assert self.registry.zone("11") is not None

    def test_replace_all(self):
        self.registry.replace_all([ZoneDefinition.from_dict(zone_dict("12"))])
        assert self.registry.device_ids() == ["12"]

    def test_replace_all_is_atomic(self):
        bad = zone_dict("13")
        bad["timeFrames"][1]["endTime"] = "05:00"
        with pytest.raises(ConfigurationError):
            self.registry.replace_all([
                ZoneDefinition.from_dict(zone_dict("12")),
                ZoneDefinition.from_dict(bad),
            ])
        assert self.registry.device_ids() == ["11"]
