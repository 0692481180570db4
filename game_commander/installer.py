"""
Game Commander — Installation Runner
═══════════════════════════════════════
Runs a blueprint's install script once in a throw-away container with the
instance data directory mounted read-write at /mnt/server.

Lifecycle of the install container:
  1. resolve the installer image (general-purpose fallback chain)
  2. normalize + write the script to a host dir mounted at /mnt/install
  3. create + start, poll until exit / timeout / cancellation
  4. capture logs, read exit code
  5. always remove the container and the script dir

Exit code 0 is success; anything else aborts provisioning.
"""

import os
import re
import time
import shutil
import logging
import threading
from typing import Dict, Optional

from docker.errors import APIError, NotFound
from pydantic import BaseModel

from . import config
from .errors import InstallationFailed, ProvisioningCancelled
from .images import ImageResolver, INSTALLER_FAMILY
from .models import Blueprint, Instance
from .startup import ensure_license, needs_license

logger = logging.getLogger(__name__)

MAX_CAPTURED_OUTPUT = 64 * 1024


class InstallResult(BaseModel):
    skipped: bool = False
    exit_code: int = 0
    image: str = ""
    output: str = ""
    license_written: bool = False


# ── Script Normalization ──────────────────────────────────

_CANONICAL = (
    # sudo is meaningless inside a root install container
    (re.compile(r"^(\s*)sudo\s+", re.M), r"\1"),
    (re.compile(r"^(\s*)apt(\s+)(update|upgrade|install|remove|purge|autoremove)\b", re.M), r"\1apt-get\2\3"),
    (re.compile(r"^(\s*)apt-get(\s+)(install|upgrade|remove|purge|autoremove)\b(?![^\n]*\s-y\b)", re.M),
     r"\1apt-get\2-y \3"),
    (re.compile(r"^(\s*)apk(\s+)add\b(?![^\n]*--no-cache)", re.M), r"\1apk\2add --no-cache"),
)


def normalize_script(script: str) -> str:
    """Unix line endings and non-interactive package-manager calls."""
    script = script.replace("\r\n", "\n").replace("\r", "\n")
    for pattern, repl in _CANONICAL:
        script = pattern.sub(repl, script)
    if not script.endswith("\n"):
        script += "\n"
    return script


# ── Runner ────────────────────────────────────────────────

def _install_env(instance: Instance) -> Dict[str, str]:
    env = dict(instance.environment)
    env["SERVER_MEMORY"] = str(instance.limits.memory_mb)
    if instance.primary_port is not None:
        env["SERVER_PORT"] = str(instance.primary_port)
    env["P_SERVER_UUID"] = instance.id
    env.setdefault("DEBIAN_FRONTEND", "noninteractive")
    return env


def _wait_for_exit(container, timeout: int, cancel_event: Optional[threading.Event]) -> int:
    deadline = time.monotonic() + timeout
    while True:
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"[Installer] Cancel requested, killing {container.name}")
            try:
                container.kill()
            except APIError:
                pass  # already exited
            raise ProvisioningCancelled("installation cancelled")

        container.reload()
        if container.status in ("exited", "dead"):
            return int(container.attrs.get("State", {}).get("ExitCode", -1))

        if time.monotonic() >= deadline:
            logger.error(f"[Installer] {container.name} exceeded {timeout}s, killing")
            try:
                container.kill()
            except APIError:
                pass
            raise InstallationFailed(f"installation timed out after {timeout}s")

        if cancel_event is not None:
            cancel_event.wait(config.RUNTIME_POLL_INTERVAL)
        else:
            time.sleep(config.RUNTIME_POLL_INTERVAL)


def _remove(container):
    try:
        container.remove(force=True)
        logger.info(f"[Installer] Removed install container {container.name}")
    except NotFound:
        pass
    except APIError as e:
        logger.error(f"[Installer] Failed to remove {container.name}: {e}")


def installer_name(instance: Instance) -> str:
    return f"{instance.container_name}_installer"


def script_dir_for(instance_id: str) -> str:
    return os.path.join(config.INSTALL_SCRIPTS_PATH, instance_id)


def remove_leftovers(client, instance: Instance):
    """Remove the install container and script dir left by an interrupted install."""
    try:
        _remove(client.containers.get(installer_name(instance)))
    except NotFound:
        pass
    shutil.rmtree(script_dir_for(instance.id), ignore_errors=True)


def run_install(
    client,
    instance: Instance,
    blueprint: Blueprint,
    data_dir: str,
    resolver: Optional[ImageResolver] = None,
    cancel_event: Optional[threading.Event] = None,
    timeout: Optional[int] = None,
) -> InstallResult:
    """
    Execute the installation phase for ``instance``.

    Raises:
        ImageResolutionExhausted: no installer image could be resolved
        InstallationFailed: nonzero exit, timeout or the runtime refused the container
        ProvisioningCancelled: ``cancel_event`` was set while running
    """
    install = blueprint.install
    if install is None or not install.script.strip():
        logger.info(f"[Installer] {instance.id}: blueprint has no install phase, skipping")
        return InstallResult(skipped=True)

    resolver = resolver or ImageResolver(client, cancel_event=cancel_event)
    preferred = [install.container] if install.container else []
    image = resolver.resolve(preferred, family=INSTALLER_FAMILY)

    remove_leftovers(client, instance)
    script_dir = script_dir_for(instance.id)
    os.makedirs(script_dir, exist_ok=True)
    os.makedirs(data_dir, exist_ok=True)
    with open(os.path.join(script_dir, "install.sh"), "w", encoding="utf-8", newline="\n") as f:
        f.write(normalize_script(install.script))

    name = installer_name(instance)
    container = None
    try:
        try:
            container = client.containers.create(
                image,
                name=name,
                entrypoint=[install.entrypoint or "bash"],
                command=[f"{config.INSTALL_SCRIPT_MOUNT}/install.sh"],
                environment=_install_env(instance),
                volumes={
                    data_dir: {"bind": config.INSTALL_MOUNT, "mode": "rw"},
                    script_dir: {"bind": config.INSTALL_SCRIPT_MOUNT, "mode": "ro"},
                },
                working_dir=config.INSTALL_MOUNT,
                labels={config.MANAGED_LABEL: "true", "game_commander.install": instance.id},
                mem_limit=f"{max(instance.limits.memory_mb, 512)}m",
            )
            container.start()
        except APIError as e:
            logger.error(f"[Installer] Runtime refused install container for {instance.id}: {e}")
            raise InstallationFailed("runtime refused to run the install container") from e

        logger.info(f"[Installer] {instance.id}: running install script in {image}")
        exit_code = _wait_for_exit(container, timeout or config.INSTALL_TIMEOUT, cancel_event)

        raw = container.logs(stdout=True, stderr=True)
        output = raw.decode("utf-8", errors="replace")[-MAX_CAPTURED_OUTPUT:]
        for line in output.splitlines():
            logger.debug(f"[Installer] {instance.id}: {line}")
    finally:
        if container is not None:
            _remove(container)
        shutil.rmtree(script_dir, ignore_errors=True)

    if exit_code != 0:
        logger.error(f"[Installer] {instance.id}: install script exited with {exit_code}")
        raise InstallationFailed(
            f"install script exited with code {exit_code}", exit_code=exit_code, output=output
        )

    license_written = False
    if needs_license(blueprint.startup, blueprint.name):
        license_written = ensure_license(data_dir)

    logger.info(f"[Installer] {instance.id}: installation finished")
    return InstallResult(exit_code=0, image=image, output=output, license_written=license_written)
