"""Tests for the Lock State Machine."""

import json

import pytest

from presence_kernel.models.settings import ConfigInvalid, ControllerSettings
from presence_kernel.reconciler.lock import LockStateMachine
from presence_kernel.store.settings import SettingsStore


def _persisted(store: SettingsStore, controller_id: str = "ctl") -> dict:
    return json.loads(store.load_raw(controller_id))


class TestLockStateMachine:
    def setup_method(self):
        self.store = SettingsStore()
        self.machine = LockStateMachine(self.store, "ctl")
        self.machine.load()

    def test_starts_unlocked(self):
        assert self.machine.locked is False
        assert self.machine.state.status.value == "unlocked"

    def test_toggle_persists_every_flip(self):
        state = self.machine.toggle()
        assert state.locked is True
        assert _persisted(self.store)["locked"] is True

        state = self.machine.toggle()
        assert state.locked is False
        assert _persisted(self.store)["locked"] is False

    def test_lock_and_unlock_are_idempotent(self):
        assert self.machine.lock() is True
        assert self.machine.lock() is False
        assert self.machine.unlock() is True
        assert self.machine.unlock() is False

    def test_lock_with_empty_targets_rejected(self):
        machine = LockStateMachine(self.store, "empty", ControllerSettings(targets=[]))
        machine.load()
        with pytest.raises(ConfigInvalid):
            machine.toggle()
        assert machine.locked is False
        assert self.store.load_raw("empty") is None

    def test_restored_verbatim(self):
        self.store.save("ctl", ControllerSettings(locked=True, targets=["a"], interval_ms=8000))
        settings = self.machine.load()
        assert settings.locked is True
        assert settings.targets == ["a"]
        assert settings.interval_ms == 8000

    def test_corrupt_persisted_lock_defaults_unlocked(self):
        self.store.write_raw("ctl", '{"locked": "definitely"}')
        assert self.machine.load().locked is False

    def test_persisted_lock_without_targets_is_reset(self):
        self.store.write_raw("ctl", '{"locked": true, "targets": []}')
        settings = self.machine.load()
        assert settings.locked is False
        assert _persisted(self.store)["locked"] is False


class TestSettingsUpdate:
    def setup_method(self):
        self.store = SettingsStore()
        self.machine = LockStateMachine(self.store, "ctl")
        self.machine.load()

    def test_update_targets(self):
        changed = self.machine.update_settings(targets=["x", " y "])
        assert changed == {"targets"}
        assert self.machine.settings.targets == ["x", "y"]
        assert _persisted(self.store)["targets"] == ["x", "y"]

    def test_update_interval_clamped(self):
        changed = self.machine.update_settings(interval_ms=1500)
        assert changed == {"interval_ms"}
        assert self.machine.settings.interval_ms == 3000

    def test_no_change_no_write(self):
        changed = self.machine.update_settings(interval_ms=7000)
        assert changed == set()
        assert self.store.load_raw("ctl") is None

    def test_rejects_empty_targets(self):
        with pytest.raises(ConfigInvalid):
            self.machine.update_settings(targets=[])
        assert self.machine.settings.targets == ControllerSettings().targets

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ConfigInvalid):
            self.machine.update_settings(interval_ms=0)
        assert self.machine.settings.interval_ms == 7000

    def test_rejection_applies_nothing(self):
        with pytest.raises(ConfigInvalid):
            self.machine.update_settings(targets=["new"], interval_ms=-1)
        assert self.machine.settings.targets == ControllerSettings().targets

    def test_update_keeps_lock_state(self):
        self.machine.lock()
        self.machine.update_settings(interval_ms=4000)
        assert self.machine.locked is True
        assert _persisted(self.store) == {
            "locked": True,
            "targets": ControllerSettings().targets,
            "intervalMs": 4000,
        }
