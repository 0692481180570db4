"""
Unit Tests: Lifecycle Manager
=============================
Tests:
  1. create → stopped → start → running, console line observed
  2. Image fallback during creation; exhausted chain creates nothing
  3. Failed install leaves no record, data dir or container behind
  4. start / stop are idempotent (one poller, one container); a new run
     never replays output of an earlier run
  5. delete detaches the console before removing the container
  6. Status derivation: offline when the container is gone or the runtime is down
  7. External port reservation across instances
  8. Commands, settings, recreate (old container kept until an image resolves)
  9. delete cancels an in-flight installation
 10. recover() after a service restart
"""

import os
import threading
import time
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from game_commander.engine import LifecycleManager, started_at
from game_commander.errors import (
    ImageResolutionExhausted, InstallationFailed, InvalidSpecError, NotFoundError,
    ProvisioningCancelled,
)
from game_commander.models import InstanceStatus, PortMapping, SettingsUpdate

YOLKS_DEBIAN = "ghcr.io/pterodactyl/yolks:debian"
JAVA_21 = "ghcr.io/pterodactyl/yolks:java_21"
INSTALLER = "ghcr.io/pterodactyl/installers:alpine"


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def runner(manager, docker_client):
    """A stopped 'tools/runner' instance on the generic fallback image."""
    docker_client.present.add(YOLKS_DEBIAN)
    return manager.create_instance(
        "runner-1", "tools/runner", {"MEM": "2048"},
        ports=[PortMapping(internal=8080, external=18080)],
    )


# ═══════════════════════════════════════════════════════════
# CREATE
# ═══════════════════════════════════════════════════════════

class TestCreate:

    def test_end_to_end(self, manager, docker_client, runner):
        assert runner.status == InstanceStatus.STOPPED
        assert runner.image == YOLKS_DEBIAN
        assert runner.startup_command == "./run.sh -Xmx2048M"
        assert runner.created_at.endswith("+00:00")
        assert manager.get_instance(runner.id).status == InstanceStatus.STOPPED

        container = docker_client.container_map[runner.container_name]
        assert container.name == f"game_server_{runner.id}"
        assert container.kwargs["environment"]["SERVER_MEMORY"] == str(runner.limits.memory_mb)
        assert container.kwargs["environment"]["STARTUP"] == "./run.sh -Xmx2048M"
        assert container.kwargs["ports"] == {"8080/tcp": 18080}

        wrapper = os.path.join(manager.data_dir(runner.id), ".commander-start.sh")
        with open(wrapper) as f:
            assert f.read().rstrip().endswith("exec ./run.sh -Xmx2048M")

        result = manager.start(runner.id)
        assert result.status == InstanceStatus.RUNNING
        assert manager.get_instance(runner.id).status == InstanceStatus.RUNNING
        assert _wait_for(lambda: any("Done" in h.line for h in manager.console.history(runner.id)))

    def test_fallback_is_recorded_and_not_pulled_twice(self, manager, docker_client, runner):
        assert docker_client.pulls == ["example/runner:old"]

    def test_egg_with_install(self, manager, docker_client):
        docker_client.present.update({JAVA_21, INSTALLER})
        inst = manager.create_instance("survival", "minecraft/java/paper")
        assert inst.image == JAVA_21
        assert inst.startup_command == "java -Xms128M -Xmx1024M -jar ${SERVER_FILE}"
        data_dir = manager.data_dir(inst.id)
        assert open(os.path.join(data_dir, "eula.txt")).read().strip() == "eula=true"
        installer = docker_client.created[0]
        assert installer.name.endswith("_installer") and installer.removed

    def test_exhausted_chain_creates_nothing(self, manager, docker_client):
        with pytest.raises(ImageResolutionExhausted) as exc:
            manager.create_instance("runner-1", "tools/runner")
        assert exc.value.tried[0] == "example/runner:old"
        assert docker_client.created == []
        assert manager.list_instances() == []
        assert os.listdir(manager.data_path) == []

    def test_failed_install_rolls_back(self, manager, docker_client):
        docker_client.present.update({JAVA_21, INSTALLER})
        docker_client.install_exit_code = 1
        with pytest.raises(InstallationFailed):
            manager.create_instance("survival", "minecraft/java/paper")
        assert manager.list_instances() == []
        assert docker_client.container_map == {}
        assert os.listdir(manager.data_path) == []

    def test_unknown_blueprint(self, manager):
        with pytest.raises(NotFoundError):
            manager.create_instance("x", "tools/nope")

    def test_invalid_variable(self, manager, docker_client):
        docker_client.present.add(YOLKS_DEBIAN)
        with pytest.raises(InvalidSpecError):
            manager.create_instance("x", "tools/runner", {"MEM": "12"})
        assert docker_client.created == []

    def test_blank_name(self, manager):
        with pytest.raises(InvalidSpecError):
            manager.create_instance("  ", "tools/runner")


class TestPorts:

    def test_duplicate_within_instance(self, manager, docker_client):
        docker_client.present.add(YOLKS_DEBIAN)
        ports = [PortMapping(internal=1, external=2000), PortMapping(internal=2, external=2000)]
        with pytest.raises(InvalidSpecError):
            manager.create_instance("x", "tools/runner", ports=ports)

    def test_conflict_with_other_instance(self, manager, docker_client, runner):
        with pytest.raises(InvalidSpecError):
            manager.create_instance("runner-2", "tools/runner",
                                    ports=[PortMapping(internal=9000, external=18080)])
        assert len(manager.list_instances()) == 1

    def test_same_port_other_protocol_is_allowed(self, manager, docker_client, runner):
        inst = manager.create_instance("runner-2", "tools/runner",
                                       ports=[PortMapping(internal=8080, external=18080, protocol="udp")])
        assert inst.status == InstanceStatus.STOPPED


# ═══════════════════════════════════════════════════════════
# START / STOP / RESTART
# ═══════════════════════════════════════════════════════════

class TestStartStop:

    def test_start_is_idempotent(self, manager, docker_client, runner):
        first = manager.start(runner.id)
        second = manager.start(runner.id)
        assert first.changed is True
        assert second.changed is False
        assert second.status == InstanceStatus.RUNNING
        assert len(docker_client.created) == 1
        assert docker_client.events.count(("start", runner.container_name)) == 1
        names = [t.name for t in threading.enumerate() if t.name.startswith("console-")]
        assert names.count(f"console-{runner.id[:8]}") == 1

    def test_stop_with_signal(self, manager, docker_client, runner):
        manager.start(runner.id)
        result = manager.stop(runner.id)
        container = docker_client.container_map[runner.container_name]
        assert result.status == InstanceStatus.STOPPED
        assert container.kills == ["SIGINT"]
        assert not manager.console.is_attached(runner.id)
        assert manager.get_instance(runner.id).status == InstanceStatus.STOPPED

    def test_stop_when_stopped_is_noop(self, manager, runner):
        assert manager.stop(runner.id).changed is False

    def test_stop_command_written_to_stdin(self, manager, docker_client):
        docker_client.present.update({JAVA_21, INSTALLER})
        inst = manager.create_instance("survival", "minecraft/java/paper")
        manager.start(inst.id)
        manager.stop(inst.id)
        container = docker_client.container_map[inst.container_name]
        container.stdin._sock.sendall.assert_called_once_with(b"stop\n")
        assert ("stop", inst.container_name) in docker_client.events
        assert manager.get_instance(inst.id).status == InstanceStatus.STOPPED

    def test_restart(self, manager, docker_client, runner):
        manager.start(runner.id)
        result = manager.restart(runner.id)
        assert result.status == InstanceStatus.RUNNING
        assert ("restart", runner.container_name) in docker_client.events
        assert manager.console.is_attached(runner.id)

    def test_new_run_does_not_replay_earlier_output(self, manager, runner):
        def boots():
            return sum("Done" in h.line for h in manager.console.history(runner.id))

        manager.start(runner.id)
        assert _wait_for(lambda: boots() == 1)
        manager.stop(runner.id)
        manager.start(runner.id)
        assert _wait_for(lambda: boots() >= 2)
        manager.restart(runner.id)
        assert _wait_for(lambda: boots() >= 3)
        time.sleep(0.1)
        assert boots() == 3

    def test_start_unknown_instance(self, manager):
        with pytest.raises(NotFoundError):
            manager.start("nope")


# ═══════════════════════════════════════════════════════════
# STATUS
# ═══════════════════════════════════════════════════════════

class TestStatus:

    def test_offline_when_container_vanished(self, manager, docker_client, runner):
        docker_client.container_map[runner.container_name].remove(force=True)
        assert manager.get_instance(runner.id).status == InstanceStatus.OFFLINE

    def test_offline_when_runtime_unreachable(self, manager, runner):
        manager._handles.clear()
        broken = MagicMock()
        broken.containers.get.side_effect = requests.exceptions.ConnectionError("refused")
        manager._client = broken
        assert manager.get_instance(runner.id).status == InstanceStatus.OFFLINE

    def test_started_at_parses_runtime_timestamp(self):
        running = SimpleNamespace(attrs={"State": {"StartedAt": "2024-05-01T12:00:00.123456789Z"}})
        expected = datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc).timestamp()
        assert started_at(running) == pytest.approx(expected)
        never = SimpleNamespace(attrs={"State": {"StartedAt": "0001-01-01T00:00:00Z"}})
        assert started_at(never) is None
        assert started_at(SimpleNamespace(attrs={"State": {}})) is None

    def test_recreate_brings_offline_instance_back(self, manager, docker_client, runner):
        docker_client.container_map[runner.container_name].remove(force=True)
        manager.recreate(runner.id)
        assert manager.get_instance(runner.id).status == InstanceStatus.STOPPED
        assert manager.start(runner.id).status == InstanceStatus.RUNNING

    def test_recreate_keeps_container_when_no_image_resolves(self, manager, docker_client, runner):
        old = docker_client.container_map[runner.container_name]
        docker_client.present.clear()
        docker_client.pullable.clear()
        with pytest.raises(ImageResolutionExhausted):
            manager.recreate(runner.id)
        assert docker_client.container_map[runner.container_name] is old
        assert not old.removed
        assert manager.get_instance(runner.id).status == InstanceStatus.STOPPED
        assert manager.get_instance(runner.id).image == YOLKS_DEBIAN


# ═══════════════════════════════════════════════════════════
# DELETE
# ═══════════════════════════════════════════════════════════

class TestDelete:

    def test_console_detached_before_container_removed(self, manager, docker_client, runner):
        manager.start(runner.id)
        real_detach = manager.console.detach

        def recording_detach(instance_id):
            docker_client.events.append(("detach", instance_id))
            return real_detach(instance_id)

        manager.console.detach = recording_detach
        result = manager.delete(runner.id)

        assert result.status == InstanceStatus.ABSENT
        detach_at = docker_client.events.index(("detach", runner.id))
        remove_at = docker_client.events.index(("remove", runner.container_name))
        assert detach_at < remove_at
        assert not manager.console.is_attached(runner.id)
        assert not os.path.exists(manager.data_dir(runner.id))
        with pytest.raises(NotFoundError):
            manager.get_instance(runner.id)

    def test_delete_twice(self, manager, runner):
        manager.delete(runner.id)
        with pytest.raises(NotFoundError):
            manager.delete(runner.id)

    def test_delete_cancels_installation(self, manager, docker_client):
        docker_client.present.update({JAVA_21, INSTALLER})
        docker_client.install_hold = True
        errors = []

        def create():
            try:
                manager.create_instance("survival", "minecraft/java/paper")
            except ProvisioningCancelled as e:
                errors.append(e)

        worker = threading.Thread(target=create)
        worker.start()
        assert _wait_for(lambda: docker_client.created)
        instance_id = manager.store.list()[0].id

        result = manager.delete(instance_id)
        worker.join(timeout=5)

        assert result.status == InstanceStatus.ABSENT
        assert len(errors) == 1
        assert manager.store.get(instance_id) is None
        assert docker_client.container_map == {}
        assert not os.path.exists(manager.data_dir(instance_id))


# ═══════════════════════════════════════════════════════════
# COMMANDS / SETTINGS
# ═══════════════════════════════════════════════════════════

class TestCommands:

    def test_command_requires_running(self, manager, runner):
        with pytest.raises(InvalidSpecError):
            manager.send_command(runner.id, "say hi")

    def test_command_result_published(self, manager, docker_client, runner):
        manager.start(runner.id)
        result = manager.send_command(runner.id, "say hi")
        container = docker_client.container_map[runner.container_name]
        assert container.execs == [["sh", "-c", "say hi"]]
        assert result.exit_code == 0
        assert result.output == "ok"
        kinds = [(h.kind, h.line) for h in manager.console.history(runner.id)]
        assert ("command_result", "ok") in kinds

    def test_get_logs(self, manager, runner):
        manager.start(runner.id)
        assert any("Done" in line for line in manager.get_logs(runner.id))


class TestSettings:

    def test_get_settings(self, manager, runner):
        settings = manager.get_settings(runner.id)
        assert settings["startup_command"] == "./run.sh -Xmx2048M"
        assert settings["environment"]["MEM"] == "2048"
        assert settings["image"] == YOLKS_DEBIAN

    def test_update_recompiles_and_recreates(self, manager, docker_client, runner):
        old = docker_client.container_map[runner.container_name]
        updated = manager.update_settings(runner.id, SettingsUpdate(environment={"MEM": "4096"}, memory_mb=4096))
        new = docker_client.container_map[runner.container_name]
        assert updated.startup_command == "./run.sh -Xmx4096M"
        assert updated.status == InstanceStatus.STOPPED
        assert old.removed and new is not old
        assert new.kwargs["mem_limit"] == "4096m"

    def test_update_restarts_running_instance(self, manager, runner):
        manager.start(runner.id)
        updated = manager.update_settings(runner.id, SettingsUpdate(cpu=200))
        assert updated.status == InstanceStatus.RUNNING
        assert manager.console.is_attached(runner.id)

    def test_startup_override_survives_recreate(self, manager, runner):
        manager.update_settings(runner.id, SettingsUpdate(startup_command="./custom.sh"))
        manager.recreate(runner.id)
        assert manager.get_instance(runner.id).startup_command == "./custom.sh"

    def test_update_rejects_invalid_variable(self, manager, runner):
        with pytest.raises(InvalidSpecError):
            manager.update_settings(runner.id, SettingsUpdate(environment={"MEM": "nope"}))


# ═══════════════════════════════════════════════════════════
# RECOVERY
# ═══════════════════════════════════════════════════════════

class TestRecover:

    def test_running_instances_reattached(self, manager, docker_client, runner):
        manager.start(runner.id)
        manager.console.shutdown()

        fresh = LifecycleManager(client=docker_client, store=manager.store,
                                 data_path=manager.data_path, eggs_path=manager.eggs_path)
        try:
            result = fresh.recover()
            assert result["recovered"] == 1
            assert fresh.console.is_attached(runner.id)
        finally:
            fresh.shutdown()

    def test_interrupted_installation_cleaned_up(self, manager, docker_client, fast_config, runner):
        stuck = manager.store.get(runner.id)
        stuck.status = InstanceStatus.INSTALLING
        manager.store.save(stuck)
        installer = docker_client.containers.create(INSTALLER, name=f"{runner.container_name}_installer")
        installer.status = "running"
        script_dir = os.path.join(fast_config.INSTALL_SCRIPTS_PATH, runner.id)
        os.makedirs(script_dir)

        result = manager.recover()

        assert result["cleaned"] == 1
        assert manager.store.get(runner.id) is None
        assert installer.removed
        assert installer.name not in docker_client.container_map
        assert runner.container_name not in docker_client.container_map
        assert not os.path.exists(script_dir)
        assert not os.path.exists(manager.data_dir(runner.id))
