# tests/conftest.py
"""
Pytest Fixtures - shared fakes for the Docker runtime, catalog and manager.
"""

import json
import time
import uuid
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, ImageNotFound, NotFound

from game_commander import config
from game_commander.engine import LifecycleManager
from game_commander.instance_store import InstanceStore


# ═══════════════════════════════════════════════════════════
# FAKE DOCKER RUNTIME
# ═══════════════════════════════════════════════════════════

class FakeContainer:
    """In-memory stand-in for docker.models.containers.Container."""

    def __init__(self, client, image, name, **kwargs):
        self.client = client
        self.image = image
        self.name = name
        self.kwargs = kwargs
        self.id = uuid.uuid4().hex
        self.status = "created"
        self.attrs = {"State": {"ExitCode": 0}}
        self.removed = False
        self.entries = []          # (timestamp, text)
        self.kills = []
        self.execs = []
        self.stdin = MagicMock()

    def emit(self, text):
        self.entries.append((time.time(), text))

    def reload(self):
        if self.removed:
            raise NotFound(f"No such container: {self.name}")

    def start(self):
        self.reload()
        self.client.events.append(("start", self.name))
        if self.name.endswith("_installer"):
            if self.client.install_hold:
                self.status = "running"
                return
            self.emit(self.client.install_output)
            self.status = "exited"
            self.attrs["State"]["ExitCode"] = self.client.install_exit_code
            return
        self.status = "running"
        for line in self.client.boot_output:
            self.emit(line)

    def stop(self, timeout=None):
        self.client.events.append(("stop", self.name))
        self.status = "exited"

    def kill(self, signal=None):
        self.kills.append(signal)
        self.client.events.append(("kill", self.name))
        self.status = "exited"

    def restart(self, timeout=None):
        self.client.events.append(("restart", self.name))
        self.status = "running"
        for line in self.client.boot_output:
            self.emit(line)

    def remove(self, force=False):
        self.client.events.append(("remove", self.name))
        self.removed = True
        self.client.container_map.pop(self.name, None)

    def logs(self, stdout=True, stderr=True, tail=None, since=None, until=None):
        picked = [
            text for ts, text in self.entries
            if (since is None or ts > since) and (until is None or ts <= until)
        ]
        if tail is not None:
            picked = picked[-tail:]
        return ("\n".join(picked) + ("\n" if picked else "")).encode("utf-8")

    def exec_run(self, cmd, workdir=None):
        self.execs.append(cmd)
        return SimpleNamespace(exit_code=0, output=self.client.exec_output)

    def attach_socket(self, params=None):
        return self.stdin


class FakeContainers:
    def __init__(self, client):
        self.client = client

    def get(self, name):
        if name not in self.client.container_map:
            raise NotFound(f"No such container: {name}")
        return self.client.container_map[name]

    def create(self, image, name=None, **kwargs):
        if self.client.create_error is not None:
            raise self.client.create_error
        if name in self.client.container_map:
            raise APIError(f"Conflict. The container name {name} is already in use")
        container = FakeContainer(self.client, image, name, **kwargs)
        self.client.container_map[name] = container
        self.client.created.append(container)
        return container


class FakeImages:
    def __init__(self, client):
        self.client = client

    def get(self, ref):
        if ref not in self.client.present:
            raise ImageNotFound(f"No such image: {ref}")
        return MagicMock(tags=[ref])

    def pull(self, ref):
        self.client.pulls.append(ref)
        if ref not in self.client.pullable:
            raise ImageNotFound(f"pull access denied for {ref}")
        self.client.present.add(ref)
        return MagicMock(tags=[ref])


class FakeDockerClient:
    def __init__(self):
        self.container_map = {}
        self.created = []
        self.events = []
        self.present = set()
        self.pullable = set()
        self.pulls = []
        self.create_error = None
        self.install_exit_code = 0
        self.install_hold = False
        self.install_output = "installing server files"
        self.boot_output = ["\x1b[32mDone (1.2s)! For help, type \"help\"\x1b[0m"]
        self.exec_output = b"ok\n"
        self.containers = FakeContainers(self)
        self.images = FakeImages(self)

    def ping(self):
        return True


@pytest.fixture
def docker_client():
    return FakeDockerClient()


# ═══════════════════════════════════════════════════════════
# CATALOG / CONFIG FIXTURES
# ═══════════════════════════════════════════════════════════

PAPER_EGG = {
    "name": "Paper",
    "author": "parker@example.com",
    "description": "High performance Minecraft server",
    "docker_images": {"Java 21": "ghcr.io/pterodactyl/yolks:java_21"},
    "startup": "java -Xms128M -Xmx{{SERVER_MEMORY}}M -jar {{SERVER_JARFILE}}",
    "config": {"stop": "stop", "startup": "{\"done\": \")! For help, type \"}"},
    "scripts": {
        "installation": {
            "container": "ghcr.io/pterodactyl/installers:alpine",
            "entrypoint": "ash",
            "script": "#!/bin/ash\r\napk add curl\r\necho installed > /mnt/server/installed.txt\r\n",
        }
    },
    "variables": [
        {
            "name": "Server Jar File",
            "env_variable": "SERVER_JARFILE",
            "default_value": "server.jar",
            "user_viewable": True,
            "user_editable": True,
            "rules": "required|regex:/^([\\w\\d._-]+)(\\.jar)$/",
        },
        {
            "name": "Minecraft Version",
            "env_variable": "MINECRAFT_VERSION",
            "default_value": "latest",
            "user_viewable": True,
            "user_editable": True,
            "rules": "nullable|string|max:20",
        },
    ],
}

RUNNER_YAML = """
name: Script Runner
description: Runs a shell script
images:
  - example/runner:old
startup: "./run.sh -Xmx{{MEM}}M"
stop: "^C"
variables:
  - name: Memory
    env_variable: MEM
    default_value: "1024"
    rules: "required|integer|between:128,16384"
"""


@pytest.fixture
def eggs_dir(tmp_path):
    """A small catalog: one egg, one YAML blueprint, one unnamed egg."""
    root = tmp_path / "eggs"
    (root / "minecraft" / "java").mkdir(parents=True)
    (root / "minecraft" / "java" / "egg-paper.json").write_text(json.dumps(PAPER_EGG))
    (root / "tools").mkdir()
    (root / "tools" / "runner.yaml").write_text(RUNNER_YAML)
    (root / "tools" / "egg-nameless.json").write_text(json.dumps({
        "name": "",
        "docker_images": {"x": "alpine:latest"},
        "startup": "true",
    }))
    return root


@pytest.fixture
def fast_config(tmp_path, monkeypatch):
    """Shrink runtime timeouts and keep install scripts inside tmp_path."""
    monkeypatch.setattr(config, "RUNTIME_POLL_INTERVAL", 0.01)
    monkeypatch.setattr(config, "START_CONFIRM_TIMEOUT", 1.0)
    monkeypatch.setattr(config, "STOP_TIMEOUT", 1)
    monkeypatch.setattr(config, "INSTALL_TIMEOUT", 5)
    monkeypatch.setattr(config, "INSTALL_SCRIPTS_PATH", str(tmp_path / "install-scripts"))
    return config


@pytest.fixture
def manager(tmp_path, docker_client, eggs_dir, fast_config):
    mgr = LifecycleManager(
        client=docker_client,
        store=InstanceStore(str(tmp_path / "db" / "commander.db")),
        data_path=str(tmp_path / "server-data"),
        eggs_path=str(eggs_dir),
    )
    mgr.console.interval = 0.02
    yield mgr
    mgr.shutdown()
