"""Tests for the FastAPI control surface."""

import pytest
from fastapi.testclient import TestClient

from fakes import PRIMARY, AfterHarness, FakeVoiceStateStore, RecordingJoin, make_registry
from presence_kernel.api.app import create_app
from presence_kernel.models.settings import ControllerConfig, ControllerSettings
from presence_kernel.store.settings import SettingsStore


@pytest.fixture
def host():
    voice = FakeVoiceStateStore()
    join = RecordingJoin(voice)
    return voice, join


@pytest.fixture
def client(host):
    """Test client with a fake host registry and a manual timer."""
    voice, join = host
    app = create_app(
        registry=make_registry(join=join, voice=voice),
        settings_store=SettingsStore(db_path=":memory:"),
        scheduler=AfterHarness(),
    )
    with TestClient(app) as test_client:
        yield test_client


class TestStatusEndpoints:
    def test_status(self, client):
        response = client.get("/status")
        assert response.status_code == 200
        data = response.json()
        assert data["running"] is True
        assert data["locked"] is False
        assert data["actuator"]["shape"] == "field:selectVoiceChannel"
        assert data["counters"] == {"attempts": 0, "successes": 0}

    def test_settings_layout(self, client):
        data = client.get("/settings").json()
        assert set(data) == {"locked", "targets", "intervalMs"}
        assert data["targets"][0] == PRIMARY
        assert data["intervalMs"] == 7000


class TestLockEndpoints:
    def test_toggle(self, client):
        response = client.post("/lock/toggle")
        assert response.status_code == 200
        assert response.json() == {"locked": True}
        assert client.get("/status").json()["locked"] is True

        response = client.post("/lock/toggle")
        assert response.json() == {"locked": False}

    def test_toggle_with_empty_targets_rejected(self):
        app = create_app(
            registry=make_registry(),
            controller_config=ControllerConfig(defaults=ControllerSettings(targets=[])),
            scheduler=AfterHarness(),
        )
        with TestClient(app) as client:
            response = client.post("/lock/toggle")
            assert response.status_code == 400
            assert "empty" in response.json()["detail"]
            assert client.get("/status").json()["locked"] is False


class TestSettingsEndpoints:
    def test_update_targets(self, client):
        response = client.put("/settings", json={"targets": ["a", "b"]})
        assert response.status_code == 200
        assert response.json()["targets"] == ["a", "b"]
        assert client.get("/settings").json()["targets"] == ["a", "b"]

    def test_interval_clamped(self, client):
        response = client.put("/settings", json={"interval_ms": 1000})
        assert response.status_code == 200
        assert response.json()["intervalMs"] == 3000

    def test_empty_targets_rejected(self, client):
        response = client.put("/settings", json={"targets": []})
        assert response.status_code == 400
        assert client.get("/settings").json()["targets"][0] == PRIMARY

    def test_non_positive_interval_rejected(self, client):
        response = client.put("/settings", json={"interval_ms": 0})
        assert response.status_code == 400
        assert client.get("/settings").json()["intervalMs"] == 7000


class TestReconcilerEndpoints:
    def test_trigger_while_unlocked(self, client, host):
        _voice, join = host
        response = client.post("/reconciler/trigger")
        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "unlocked"
        assert data["attempted"] is False
        assert join.calls == []

    def test_trigger_while_locked(self, client, host):
        voice, join = host
        client.post("/lock/toggle")
        data = client.post("/reconciler/trigger").json()
        assert data["outcome"] in ("attached", "already_attached")

        status = client.get("/status").json()
        assert status["counters"]["successes"] == 1
        assert join.calls == [PRIMARY]
        assert voice.channel == PRIMARY

        reports = client.get("/reports").json()
        assert len(reports) >= 1
        assert any(r["chosenTarget"] == PRIMARY for r in reports)

    def test_reports_limit(self, client):
        for _ in range(3):
            client.post("/reconciler/trigger")
        assert len(client.get("/reports", params={"limit": 2}).json()) == 2

    def test_restart_resets_counters(self, client):
        client.post("/lock/toggle")
        client.post("/reconciler/trigger")
        data = client.post("/controller/restart").json()
        assert data["running"] is True
        assert data["locked"] is True
        # Already attached, so the resumed tick leaves the fresh counters alone
        assert data["counters"] == {"attempts": 0, "successes": 0}
