"""Tests for MetricsProperties."""

import json
import uuid

import pytest

from telemetry import config
from telemetry.config import MetricsProperties
from telemetry.exceptions import ConfigurationError, MalformedPropertiesError


class TestMetricsProperties:
    """Tests for parsing and defaults."""

    def test_defaults(self) -> None:
        properties = MetricsProperties()

        assert properties.sample_interval == config.SAMPLE_INTERVAL
        assert properties.report_interval == config.REPORT_INTERVAL
        assert properties.server_id is None

    def test_parses_string_values(self) -> None:
        properties = MetricsProperties({
            "sample_interval": "15",
            "report_interval": "300.5",
            "server_id": "8d1f6a1e-3c0b-4f3e-9a57-0c6b2d4e5f60",
        })

        assert properties.sample_interval == 15.0
        assert properties.report_interval == 300.5
        assert properties.server_id == uuid.UUID("8d1f6a1e-3c0b-4f3e-9a57-0c6b2d4e5f60")

    @pytest.mark.parametrize("value", ["soon", "0", "-5"])
    def test_rejects_bad_intervals(self, value: str) -> None:
        with pytest.raises(MalformedPropertiesError):
            MetricsProperties({"sample_interval": value}).sample_interval

    def test_rejects_bad_server_id(self) -> None:
        with pytest.raises(MalformedPropertiesError, match="server_id"):
            MetricsProperties({"server_id": "nope"}).server_id

    def test_set_and_remove(self) -> None:
        properties = MetricsProperties().set("sample_interval", 5)
        assert properties.sample_interval == 5

        properties.set("sample_interval", None)
        assert properties.as_dict() == {}

    def test_from_env(self) -> None:
        properties = MetricsProperties.from_env({
            "METRICS_SAMPLE_INTERVAL": "10",
            "UNRELATED": "x",
        })

        assert properties.as_dict() == {"sample_interval": "10"}

    def test_from_file(self, tmp_path) -> None:
        path = tmp_path / "metrics.json"
        path.write_text(json.dumps({"report_interval": 600, "ignored": True}))

        properties = MetricsProperties.from_file(str(path))

        assert properties.as_dict() == {"report_interval": 600}

    def test_from_file_rejects_invalid_json(self, tmp_path) -> None:
        path = tmp_path / "metrics.json"
        path.write_text("{not json")

        with pytest.raises(MalformedPropertiesError):
            MetricsProperties.from_file(str(path))

    def test_from_file_rejects_non_objects(self, tmp_path) -> None:
        path = tmp_path / "metrics.json"
        path.write_text("[1, 2]")

        with pytest.raises(MalformedPropertiesError):
            MetricsProperties.from_file(str(path))

    def test_from_file_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError, match="Could not read config file"):
            MetricsProperties.from_file(str(tmp_path / "missing.json"))
