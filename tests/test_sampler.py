"""Tests for the sampler, its buffer and report assembly."""

import threading
from datetime import datetime
from unittest import mock

import pytest
import pytz

from telemetry.endpoint import HttpEndpoint
from telemetry.exceptions import SerializationError, SourceProductionError
from telemetry.report import Delivery, Report, Reporter
from telemetry.sample import Sample, Sampler
from telemetry.source import MetricKey, SourceRegistry, array_source, object_source, scalar_source


def collect_errors():
    errors = []

    def handler(key, error):
        errors.append((key, error))

    return errors, handler


def explode(context):
    raise RuntimeError("source failed")


class TestTakeSample:
    """Tests for Sampler.take_sample()."""

    def test_builds_payload_by_namespace(self, context, sys_registry) -> None:
        """Values are grouped into one category per namespace."""
        sampler = Sampler(context, sys_registry)
        errors, handler = collect_errors()

        sample = sampler.take_sample(handler, persist=False)

        assert sample.payload == {"sys": {"os_name": "Linux", "cpu_count": 4}}
        assert errors == []

    def test_categories_preserve_registry_order(self, context) -> None:
        registry = SourceRegistry([
            scalar_source("b", "one", lambda ctx: 1),
            scalar_source("a", "two", lambda ctx: 2),
            scalar_source("b", "three", lambda ctx: 3),
        ])
        sample = Sampler(context, registry).take_sample(lambda key, error: None, persist=False)

        assert list(sample.payload) == ["b", "a"]
        assert list(sample.payload["b"]) == ["one", "three"]

    def test_failing_source_is_omitted(self, context) -> None:
        """A failing source never appears and never hides its siblings."""
        registry = SourceRegistry([
            scalar_source("sys", "before", lambda ctx: 1),
            scalar_source("sys", "explode", explode),
            scalar_source("sys", "after", lambda ctx: 2),
        ])
        errors, handler = collect_errors()

        sample = Sampler(context, registry).take_sample(handler, persist=False)

        assert sample.payload == {"sys": {"before": 1, "after": 2}}
        assert len(errors) == 1
        key, error = errors[0]
        assert key == MetricKey("sys", "explode")
        assert isinstance(error, SourceProductionError)
        assert isinstance(error.__cause__, RuntimeError)

    def test_only_failing_source_leaves_no_category(self, context) -> None:
        registry = SourceRegistry([scalar_source("broken", "explode", explode)])

        sample = Sampler(context, registry).take_sample(lambda key, error: None, persist=False)

        assert sample.payload == {}

    def test_serialization_error_is_isolated(self, context) -> None:
        registry = SourceRegistry([
            scalar_source("sys", "wrong_shape", lambda ctx: [1, 2]),
            scalar_source("sys", "fine", lambda ctx: "ok"),
        ])
        errors, handler = collect_errors()

        sample = Sampler(context, registry).take_sample(handler, persist=False)

        assert sample.payload == {"sys": {"fine": "ok"}}
        assert [key for key, _ in errors] == [MetricKey("sys", "wrong_shape")]
        assert isinstance(errors[0][1], SerializationError)

    def test_source_without_value_contributes_nothing(self, context) -> None:
        registry = SourceRegistry([
            scalar_source("sys", "missing", lambda ctx: None),
            array_source("host", "attached", lambda ctx: None),
        ])

        sample = Sampler(context, registry).take_sample(lambda key, error: None, persist=False)

        assert sample.payload == {}

    def test_composite_values(self, context) -> None:
        registry = SourceRegistry([
            object_source("sys", "load", lambda ctx: {"1m": 0.1}),
            array_source("sys", "disks", lambda ctx: [{"fstype": "ext4"}]),
        ])

        sample = Sampler(context, registry).take_sample(lambda key, error: None, persist=False)

        assert sample.payload == {"sys": {"load": {"1m": 0.1}, "disks": [{"fstype": "ext4"}]}}

    def test_failing_error_handler_does_not_abort(self, context) -> None:
        registry = SourceRegistry([
            scalar_source("sys", "explode", explode),
            scalar_source("sys", "fine", lambda ctx: 1),
        ])

        def handler(key, error):
            raise ValueError("handler failed")

        sample = Sampler(context, registry).take_sample(handler, persist=False)

        assert sample.payload == {"sys": {"fine": 1}}

    def test_sample_identity_and_timestamp(self, context, sys_registry, server_id) -> None:
        """Every sample gets a fresh id and a UTC timestamp taken after polling."""
        polled_at = []
        sys_registry.register(scalar_source("sys", "clock", lambda ctx: polled_at.append(datetime.now(pytz.UTC))))
        sampler = Sampler(context, sys_registry)

        first = sampler.take_sample(lambda key, error: None, persist=False)
        second = sampler.take_sample(lambda key, error: None, persist=False)

        assert first.id != second.id
        assert first != second
        assert first.server_id == server_id
        assert first.taken_at.tzinfo is not None
        assert first.taken_at >= polled_at[0]

    def test_requires_error_handler(self, context, sys_registry) -> None:
        with pytest.raises(ValueError):
            Sampler(context, sys_registry).take_sample(None, persist=True)  # type: ignore[arg-type]

    def test_persist_controls_buffering(self, context, sys_registry) -> None:
        sampler = Sampler(context, sys_registry)

        sampler.take_sample(lambda key, error: None, persist=False)
        assert sampler.pending_count == 0

        sample = sampler.take_sample(lambda key, error: None, persist=True)
        assert sampler.samples == (sample,)


class TestListeners:
    """Tests for listeners inspecting samples before serialization."""

    def test_listener_can_add_and_remove_entries(self, context, sys_registry) -> None:
        sampler = Sampler(context, sys_registry)

        def augment(event):
            del event.data[MetricKey("sys", "cpu_count")]
            event.data[MetricKey("custom", "plugins")] = [{"name": "a"}]
            event.data["custom:enabled"] = True

        sampler.add_listener(augment)
        sample = sampler.take_sample(lambda key, error: None, persist=False)

        assert sample.payload == {
            "sys": {"os_name": "Linux"},
            "custom": {"plugins": [{"name": "a"}], "enabled": True},
        }

    def test_listener_sees_context(self, context, sys_registry) -> None:
        seen = []
        sampler = Sampler(context, sys_registry)
        sampler.add_listener(lambda event: seen.append(event.context))

        sampler.take_sample(lambda key, error: None, persist=False)

        assert seen == [context]

    def test_failing_listener_is_skipped(self, context, sys_registry) -> None:
        sampler = Sampler(context, sys_registry)

        def broken(event):
            raise RuntimeError("listener failed")

        sampler.add_listener(broken)
        sample = sampler.take_sample(lambda key, error: None, persist=False)

        assert sample.payload == {"sys": {"os_name": "Linux", "cpu_count": 4}}

    def test_unserializable_listener_entry_is_reported(self, context, sys_registry) -> None:
        errors, handler = collect_errors()
        sampler = Sampler(context, sys_registry)
        sampler.add_listener(lambda event: event.data.__setitem__(MetricKey("custom", "bad"), object()))

        sample = sampler.take_sample(handler, persist=False)

        assert "custom" not in sample.payload
        assert [key for key, _ in errors] == [MetricKey("custom", "bad")]


class TestFlush:
    """Tests for draining the buffer."""

    def test_flush_returns_samples_in_capture_order(self, context, sys_registry) -> None:
        sampler = Sampler(context, sys_registry)
        taken = [sampler.take_sample(lambda key, error: None, persist=True) for _ in range(3)]

        assert sampler.flush() == taken
        assert sampler.flush() == []

    def test_interleaved_flushes_return_every_sample_once(self, context, sys_registry) -> None:
        """The union of all flushes is exactly the set of persisted samples."""
        sampler = Sampler(context, sys_registry)
        taken, flushed = [], []

        for i in range(20):
            taken.append(sampler.take_sample(lambda key, error: None, persist=True))
            if i % 3 == 0:
                flushed.extend(sampler.flush())
        flushed.extend(sampler.flush())

        assert flushed == taken
        assert len(set(flushed)) == 20

    def test_concurrent_appends_and_flushes_lose_nothing(self, context, sys_registry) -> None:
        sampler = Sampler(context, sys_registry)
        produced = []
        drained = []
        done = threading.Event()

        def produce():
            for _ in range(500):
                produced.append(sampler.take_sample(lambda key, error: None, persist=True))
            done.set()

        def drain():
            while not done.is_set():
                drained.extend(sampler.flush())

        threads = [threading.Thread(target=produce), threading.Thread(target=drain)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        drained.extend(sampler.flush())

        assert len(drained) == len(produced) == 500
        assert set(drained) == set(produced)

    def test_offer_rejects_non_samples(self, context, sys_registry) -> None:
        with pytest.raises(TypeError):
            Sampler(context, sys_registry).offer({"id": "x"})  # type: ignore[arg-type]


class TestCreateReport:
    """Tests for Sampler.create_report()."""

    def test_empty_buffer_yields_no_report(self, context, sys_registry) -> None:
        assert Sampler(context, sys_registry).create_report() is None

    def test_report_contains_drained_samples(self, context, sys_registry) -> None:
        sampler = Sampler(context, sys_registry)
        taken = [sampler.take_sample(lambda key, error: None, persist=True) for _ in range(2)]

        report = sampler.create_report()

        assert isinstance(report, Report)
        assert list(report.samples) == taken
        assert sampler.create_report() is None

    def test_end_to_end_example(self, context, sys_registry) -> None:
        """A sample taken, drained into a report and posted over HTTP."""
        sampler = Sampler(context, sys_registry)
        sampler.take_sample(lambda key, error: None, persist=True)
        endpoint = HttpEndpoint("https://metrics.example.com/")
        reporter = Reporter(sampler, [endpoint])

        report = sampler.create_report()
        with mock.patch("telemetry.endpoint.requests.post") as post:
            post.return_value.status_code = 204
            delivery = reporter.report(report).result(timeout=5)
        reporter.shutdown()

        assert len(report.samples) == 1
        assert report.samples[0].payload == {"sys": {"os_name": "Linux", "cpu_count": 4}}
        assert post.call_count == 1
        assert post.call_args[0][0] == "https://metrics.example.com/"
        assert post.call_args[1]["data"] == report.to_json()
        assert delivery == Delivery(report.id, (endpoint,), ())
        assert delivery.ok
        assert sampler.pending_count == 0


class TestRunTick:
    """Tests for the sampling tick."""

    def test_tick_buffers_a_sample_and_logs_errors(self, context, caplog) -> None:
        registry = SourceRegistry([
            scalar_source("sys", "explode", explode),
            scalar_source("sys", "fine", lambda ctx: 1),
        ])
        sampler = Sampler(context, registry)

        with caplog.at_level("ERROR"):
            sampler.run_tick()

        assert sampler.pending_count == 1
        assert "Could not take sample for sys:explode" in caplog.text


class TestSample:
    """Tests for the Sample value object."""

    def test_serialize(self, server_id) -> None:
        import uuid

        sample_id = uuid.UUID("11111111-1111-1111-1111-111111111111")
        taken_at = datetime(2024, 1, 2, 3, 4, 5, tzinfo=pytz.UTC)
        sample = Sample(sample_id, server_id, taken_at, {"sys": {"cpu_count": 4}})

        assert sample.serialize() == {
            "id": "11111111-1111-1111-1111-111111111111",
            "server_id": str(server_id),
            "taken_at": "2024-01-02T03:04:05+00:00",
            "payload": {"sys": {"cpu_count": 4}},
        }

    def test_requires_all_fields(self, server_id) -> None:
        with pytest.raises(ValueError):
            Sample(None, server_id, datetime.now(pytz.UTC), {})  # type: ignore[arg-type]
