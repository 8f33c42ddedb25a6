"""Tests for health classification and tracking."""

from __future__ import annotations

import pytest

from switchboard.engine.health import HealthStatus, HealthTracker, classify_error
from switchboard.events import types as events
from switchboard.exceptions import ModelConnectionError
from switchboard.models.descriptor import ServerModel


class TestClassifyError:
    @pytest.mark.parametrize("message", [
        "Invalid API key",
        "authentication failed",
        "401 Unauthorized",
        "Could not resolve credential for 'anthropic'",
        "403 Forbidden",
        "permission denied",
        "model 'llama9' not found",
        "Model llama9:latest not found, try pulling it first",
    ])
    def test_failed(self, message):
        assert classify_error(message) is HealthStatus.FAILED

    @pytest.mark.parametrize("message", [
        "Cannot connect to Ollama at http://localhost:11434",
        "request timed out",
        "ECONNREFUSED",
        "network error",
        "fetch failed",
    ])
    def test_unhealthy(self, message):
        assert classify_error(message) is HealthStatus.UNHEALTHY

    def test_unknown_messages_are_transient(self):
        assert classify_error("something odd happened") is HealthStatus.UNHEALTHY

    def test_credential_wins_over_connection(self):
        assert classify_error("connection rejected: invalid api key") is HealthStatus.FAILED

    def test_accepts_exceptions(self):
        error = ModelConnectionError("Ollama request timed out (llama3): read timeout")
        assert classify_error(error) is HealthStatus.UNHEALTHY

    def test_deterministic(self):
        assert classify_error("timeout") is classify_error("timeout")


class TestHealthTracker:
    def test_unknown_by_default(self, catalog):
        assert HealthTracker(catalog).status("local-a") is HealthStatus.UNKNOWN

    def test_success_and_failure(self, catalog):
        tracker = HealthTracker(catalog)
        tracker.record_failure("local-a", "connection refused")
        record = tracker.record("local-a")
        assert record.status is HealthStatus.UNHEALTHY
        assert record.consecutive_failures == 1
        assert record.last_error == "connection refused"

        tracker.record_failure("local-a", "connection refused")
        assert tracker.record("local-a").consecutive_failures == 2

        tracker.record_success("local-a")
        record = tracker.record("local-a")
        assert record.status is HealthStatus.HEALTHY
        assert record.consecutive_failures == 0
        assert record.last_error == ""

    def test_alternatives_exclude_failed_and_variants(self, catalog):
        tracker = HealthTracker(catalog)
        tracker.record_failure("local-b", "invalid api key")
        assert tracker.alternatives_for("local-a") == ["cloud-c"]

    def test_alternatives_skip_unavailable_models(self, catalog):
        catalog.register(
            ServerModel(id="gone", provider="fake", server="http://gpu-box:11434"),
            source="discovered",
        )
        tracker = HealthTracker(catalog)
        assert "gone" in tracker.alternatives_for("local-a")

        catalog.mark_unavailable("gone")
        assert tracker.alternatives_for("local-a") == ["local-b", "cloud-c"]

    def test_alternatives_include_unhealthy_never(self, catalog):
        tracker = HealthTracker(catalog)
        tracker.record_failure("cloud-c", "timeout")
        tracker.record_success("local-b")
        assert tracker.alternatives_for("local-a") == ["local-b"]

    def test_error_context(self, catalog):
        tracker = HealthTracker(catalog)
        error = RuntimeError("model 'x' not found")
        tracker.record_failure("local-a", error)
        context = tracker.error_context("local-a", error, topic_id="t1")
        assert context.health_status is HealthStatus.FAILED
        assert not context.is_retryable
        assert context.topic_id == "t1"
        assert context.message == "model 'x' not found"
        assert "local-a" not in context.alternative_models

    def test_transient_failure_is_retryable(self, catalog):
        tracker = HealthTracker(catalog)
        error = RuntimeError("connection reset")
        tracker.record_failure("local-a", error)
        assert tracker.error_context("local-a", error).is_retryable

    def test_status_changes_are_published(self, catalog, events_bus):
        tracker = HealthTracker(catalog, events_bus)
        tracker.record_success("local-a")
        tracker.record_success("local-a")
        tracker.record_failure("local-a", "timeout")
        changes = events_bus.recent_events(event_type=events.MODEL_HEALTH_CHANGED)
        assert [(e.data["previous"], e.data["status"]) for e in changes] == [
            ("unknown", "healthy"),
            ("healthy", "unhealthy"),
        ]

    def test_reset(self, catalog):
        tracker = HealthTracker(catalog)
        tracker.record_success("local-a")
        tracker.record_success("local-b")
        tracker.reset("local-a")
        assert tracker.status("local-a") is HealthStatus.UNKNOWN
        assert set(tracker.snapshot()) == {"local-b"}
        tracker.reset()
        assert tracker.snapshot() == {}
