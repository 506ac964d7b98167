"""Tests for the upload wire format."""

from __future__ import annotations

import json
import math

import pytest

from tracekit.errors import MalformedPayloadError
from tracekit.sync.wire import build_payload, encode_payload, point_to_feature
from tracekit.tests.conftest import make_point


class TestFeature:
    def test_feature_shape(self) -> None:
        feature = point_to_feature(make_point(15, motion="walking"))

        assert feature["type"] == "Feature"
        assert feature["geometry"] == {"type": "Point", "coordinates": [13.405, 52.52]}
        props = feature["properties"]
        assert props["motion"] == ["walking"]
        assert props["timestamp"] == "2025-04-16T10:00:15Z"
        assert props["speed"] == 1.4
        assert props["horizontal_accuracy"] == 5.0
        assert props["vertical_accuracy"] == 3.0
        assert props["altitude"] == 34.0

    def test_constant_properties(self) -> None:
        props = point_to_feature(make_point())["properties"]
        assert props["course"] == -1
        assert props["course_accuracy"] == -1
        assert props["speed_accuracy"] == 0.07
        assert props["wifi"] == "unknown"

    def test_speed_accuracy_is_configurable(self) -> None:
        props = point_to_feature(make_point(), speed_accuracy=0.5)["properties"]
        assert props["speed_accuracy"] == 0.5

    @pytest.mark.parametrize("field", ["latitude", "speed", "altitude"])
    def test_non_finite_values_rejected(self, field: str) -> None:
        point = make_point()
        setattr(point, field, math.nan)
        with pytest.raises(MalformedPayloadError, match=field):
            point_to_feature(point)

    def test_bad_timestamp_rejected(self) -> None:
        point = make_point()
        point.timestamp = "yesterday"
        with pytest.raises(MalformedPayloadError):
            point_to_feature(point)


class TestPayload:
    def test_locations_in_point_order(self) -> None:
        points = [make_point(s) for s in (1, 2, 3)]
        payload = build_payload(points)
        stamps = [f["properties"]["timestamp"] for f in payload["locations"]]
        assert stamps == [
            "2025-04-16T10:00:01Z",
            "2025-04-16T10:00:02Z",
            "2025-04-16T10:00:03Z",
        ]

    def test_encoded_body_is_json(self) -> None:
        body = encode_payload([make_point(1)])
        decoded = json.loads(body)
        assert list(decoded) == ["locations"]
        assert len(decoded["locations"]) == 1
