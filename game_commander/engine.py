"""
Game Commander — Engine (Lifecycle Manager)
═══════════════════════════════════════════════
Docker SDK integration for the game-server lifecycle:
- Provision: blueprint → image → install → compile startup → create container
- Start / Stop / Restart / Delete / Recreate
- Execute console commands inside running containers
- Attach the console supervisor while an instance runs
- Rebuild runtime state after a service restart

The persisted Instance record is the source of truth. Container handles are
a cache keyed by instance id and re-acquired by name (<prefix>_<id>).
Lifecycle operations on one instance are serialized by a per-instance lock.
"""

import os
import re
import time
import uuid
import shutil
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from docker.errors import NotFound

from . import config
from .blueprint_store import resolve_blueprint, resolve_variables
from .console import ConsoleSupervisor, clean_lines
from .docker_client import get_client, runtime_errors
from .errors import (
    AlreadyInState, CommanderError, InvalidSpecError, NotFoundError,
    ProvisioningCancelled, RuntimeRejected, RuntimeUnavailable,
)
from .files import FileAccessor
from .images import ImageResolver
from .installer import remove_leftovers, run_install
from .instance_store import InstanceStore
from .models import (
    ActionResult, CommandResult, Instance, InstanceStatus, PortMapping,
    ResourceLimits, SettingsUpdate,
)
from .startup import (
    WRAPPER_NAME, build_wrapper, compile_startup, needs_license,
    startup_values, write_wrapper,
)

logger = logging.getLogger(__name__)

_SETTLED = (InstanceStatus.STOPPED, InstanceStatus.RUNNING, InstanceStatus.OFFLINE)
_SIGNALS = {"^C": "SIGINT", "^X": "SIGTERM"}


def validate_ports(ports: List[PortMapping]):
    """Internal and external ports must be unique within one instance."""
    seen_internal, seen_external = set(), set()
    for p in ports:
        if (p.internal, p.protocol) in seen_internal:
            raise InvalidSpecError(f"internal port {p.internal}/{p.protocol} mapped twice")
        if (p.external, p.protocol) in seen_external:
            raise InvalidSpecError(f"external port {p.external}/{p.protocol} mapped twice")
        seen_internal.add((p.internal, p.protocol))
        seen_external.add((p.external, p.protocol))


def started_at(container) -> Optional[float]:
    """Epoch time the container's current run began, from State.StartedAt."""
    raw = ((container.attrs or {}).get("State") or {}).get("StartedAt") or ""
    if not raw or raw.startswith("0001-"):
        return None
    stamp, _, frac = raw.rstrip("Z").partition(".")
    try:
        moment = datetime.strptime(stamp, "%Y-%m-%dT%H:%M:%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    # Docker reports nanoseconds; keep microseconds
    digits = re.match(r"\d*", frac).group()[:6]
    return moment.timestamp() + (float(f"0.{digits}") if digits else 0.0)


class LifecycleManager:
    def __init__(
        self,
        client=None,
        store: Optional[InstanceStore] = None,
        data_path: Optional[str] = None,
        eggs_path: Optional[str] = None,
        console: Optional[ConsoleSupervisor] = None,
    ):
        self._client = client
        self.store = store or InstanceStore()
        self.data_path = data_path or config.DATA_PATH
        self.eggs_path = eggs_path
        self.console = console or ConsoleSupervisor(self._get_client, on_exit=self._on_console_exit)
        self.files = FileAccessor(self.data_dir_of)

        self._handles: Dict[str, object] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._ports_lock = threading.Lock()
        self._cancel: Dict[str, threading.Event] = {}
        os.makedirs(self.data_path, exist_ok=True)

    # ── Plumbing ─────────────────────────────────────────

    def _get_client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    @property
    def client(self):
        return self._get_client()

    def _lock_for(self, instance_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(instance_id, threading.Lock())

    def data_dir(self, instance_id: str) -> str:
        return os.path.join(self.data_path, instance_id)

    def data_dir_of(self, instance_id: str) -> str:
        """Data directory of an existing instance (NotFoundError otherwise)."""
        self._require(instance_id)
        return self.data_dir(instance_id)

    def _require(self, instance_id: str) -> Instance:
        instance = self.store.get(instance_id)
        if instance is None:
            raise NotFoundError("instance", instance_id)
        return instance

    def _find_container(self, instance: Instance):
        """Cached handle or a fresh lookup by name; None if the container is gone."""
        handle = self._handles.get(instance.id)
        with runtime_errors("inspect", instance.container_name):
            if handle is not None:
                try:
                    handle.reload()
                    return handle
                except NotFound:
                    self._handles.pop(instance.id, None)
            try:
                handle = self.client.containers.get(instance.container_name)
            except NotFound:
                return None
        self._handles[instance.id] = handle
        return handle

    def _container(self, instance: Instance):
        container = self._find_container(instance)
        if container is None:
            raise NotFoundError("container", instance.container_name)
        return container

    def _await_status(self, container, want_running: bool, timeout: float) -> bool:
        deadline = time.monotonic() + timeout
        while True:
            container.reload()
            if (container.status == "running") == want_running:
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(config.RUNTIME_POLL_INTERVAL)

    def _ensure_settled(self, instance: Instance):
        if instance.status not in _SETTLED:
            raise InvalidSpecError(f"instance '{instance.id}' is {instance.status.value}")

    def _check_port_conflicts(self, instance_id: str, ports: List[PortMapping]):
        """Orchestrator-level reservation of external ports across instances."""
        wanted = {(p.external, p.protocol) for p in ports}
        for other in self.store.list():
            if other.id == instance_id:
                continue
            for p in other.ports:
                if (p.external, p.protocol) in wanted:
                    raise InvalidSpecError(
                        f"external port {p.external}/{p.protocol} is reserved by instance '{other.name}'"
                    )

    def _save(self, instance: Instance, status: Optional[InstanceStatus] = None) -> Instance:
        if status is not None:
            instance.status = status
        return self.store.save(instance)

    # ── Status ───────────────────────────────────────────

    def derive_status(self, instance: Instance) -> InstanceStatus:
        """Runtime's view of the instance. Never raises."""
        if instance.status in (InstanceStatus.CREATED, InstanceStatus.INSTALLING, InstanceStatus.DELETING):
            return instance.status
        try:
            container = self._find_container(instance)
        except CommanderError as e:
            logger.warning(f"[Engine] Status query failed for {instance.id}: {e.message}")
            return InstanceStatus.OFFLINE
        if container is None:
            return InstanceStatus.OFFLINE
        return InstanceStatus.RUNNING if container.status == "running" else InstanceStatus.STOPPED

    def get_instance(self, instance_id: str) -> Instance:
        instance = self._require(instance_id)
        instance.status = self.derive_status(instance)
        return instance

    def list_instances(self) -> List[Instance]:
        result = []
        for instance in self.store.list():
            instance.status = self.derive_status(instance)
            result.append(instance)
        return result

    # ── Container Construction ───────────────────────────

    def _compile(self, instance: Instance) -> str:
        values = startup_values(
            instance.environment,
            memory_mb=instance.limits.memory_mb,
            port=instance.primary_port,
            instance_id=instance.id,
        )
        return compile_startup(instance.blueprint.startup, values)

    def _container_env(self, instance: Instance) -> Dict[str, str]:
        env = dict(instance.environment)
        env["SERVER_MEMORY"] = str(instance.limits.memory_mb)
        if instance.primary_port is not None:
            env["SERVER_PORT"] = str(instance.primary_port)
        env["SERVER_IP"] = "0.0.0.0"
        env["P_SERVER_UUID"] = instance.id
        env["STARTUP"] = instance.startup_command
        return env

    def _create_container(self, instance: Instance):
        data_dir = self.data_dir(instance.id)
        os.makedirs(data_dir, exist_ok=True)
        script = build_wrapper(
            instance.startup_command,
            preferred_file=instance.environment.get("SERVER_JARFILE", ""),
            accept_license=needs_license(instance.blueprint.startup, instance.blueprint.name),
        )
        write_wrapper(data_dir, script)

        kwargs = dict(
            name=instance.container_name,
            command=["/bin/sh", f"{config.CONTAINER_HOME}/{WRAPPER_NAME}"],
            environment=self._container_env(instance),
            ports={f"{p.internal}/{p.protocol}": p.external for p in instance.ports},
            volumes={data_dir: {"bind": config.CONTAINER_HOME, "mode": "rw"}},
            working_dir=config.CONTAINER_HOME,
            user=config.CONTAINER_USER,
            mem_limit=f"{instance.limits.memory_mb}m",
            labels={
                config.MANAGED_LABEL: "true",
                "game_commander.instance": instance.id,
                "game_commander.blueprint": instance.blueprint.id,
            },
            stdin_open=True,
            tty=True,
        )
        if instance.limits.cpu > 0:
            kwargs["nano_cpus"] = instance.limits.cpu * 10_000_000
        if config.ENFORCE_DISK_QUOTA and instance.limits.disk_mb > 0:
            kwargs["storage_opt"] = {"size": f"{instance.limits.disk_mb}M"}

        with runtime_errors("create", instance.container_name):
            container = self.client.containers.create(instance.image, **kwargs)
        self._handles[instance.id] = container
        logger.info(f"[Engine] Created container {instance.container_name} from {instance.image}")
        return container

    def _remove_container(self, instance: Instance):
        self._handles.pop(instance.id, None)
        with runtime_errors("remove", instance.container_name):
            try:
                self.client.containers.get(instance.container_name).remove(force=True)
                logger.info(f"[Engine] Removed container {instance.container_name}")
            except NotFound:
                pass

    # ── Create ───────────────────────────────────────────

    def create_instance(
        self,
        name: str,
        blueprint_ref: str,
        environment: Optional[Dict[str, str]] = None,
        ports: Optional[List[PortMapping]] = None,
        limits: Optional[ResourceLimits] = None,
        startup_command: Optional[str] = None,
    ) -> Instance:
        """
        Provision a new instance end-to-end. Returns it in ``stopped`` state.

        Nothing is left behind on failure: record, data directory and any
        container are removed before the error propagates.
        """
        if not name or not name.strip():
            raise InvalidSpecError("instance name is required")
        bp = resolve_blueprint(blueprint_ref, self.eggs_path)
        env = resolve_variables(bp, environment)
        ports = list(ports or [])
        validate_ports(ports)

        instance = Instance(
            id=str(uuid.uuid4()),
            name=name.strip(),
            blueprint=bp,
            environment=env,
            ports=ports,
            limits=limits or ResourceLimits(),
            status=InstanceStatus.INSTALLING,
        )
        if startup_command:
            instance.startup_command = startup_command
            instance.startup_override = True

        cancel = threading.Event()
        self._cancel[instance.id] = cancel
        try:
            with self._lock_for(instance.id):
                with self._ports_lock:
                    self._check_port_conflicts(instance.id, ports)
                    self._save(instance)
                os.makedirs(self.data_dir(instance.id), exist_ok=True)
                self.store.log_action(instance.id, "create", f"blueprint={bp.id}")
                logger.info(f"[Engine] Provisioning {instance.id} ({instance.name}) from {bp.id}")
                try:
                    self._provision(instance, cancel)
                except Exception as e:
                    self._abort_creation(instance, e)
                    raise
        finally:
            self._cancel.pop(instance.id, None)
        return instance

    def _provision(self, instance: Instance, cancel: threading.Event):
        bp = instance.blueprint
        with runtime_errors("provision", instance.container_name):
            resolver = ImageResolver(self.client, cancel_event=cancel)
            instance.image = resolver.resolve(bp.images)
            run_install(self.client, instance, bp, self.data_dir(instance.id),
                        resolver=resolver, cancel_event=cancel)
            if cancel.is_set():
                raise ProvisioningCancelled("provisioning cancelled")
            if not instance.startup_override:
                instance.startup_command = self._compile(instance)
            self._create_container(instance)
        self._save(instance, InstanceStatus.STOPPED)
        self.store.log_action(instance.id, "installed", f"image={instance.image}")

    def _abort_creation(self, instance: Instance, error: Exception):
        kind = getattr(error, "kind", type(error).__name__)
        logger.error(f"[Engine] Provisioning {instance.id} failed ({kind}): {error}")
        try:
            self._remove_container(instance)
        except CommanderError as e:
            logger.error(f"[Engine] Cleanup of {instance.container_name} failed: {e.message}")
        try:
            with runtime_errors("cleanup", f"{instance.container_name}_installer"):
                remove_leftovers(self.client, instance)
        except CommanderError as e:
            logger.error(f"[Engine] Cleanup of install leftovers for {instance.id} failed: {e.message}")
        shutil.rmtree(self.data_dir(instance.id), ignore_errors=True)
        self.store.delete(instance.id)
        self.store.log_action(instance.id, "create_failed", kind)

    # ── Start / Stop / Restart ───────────────────────────

    def start(self, instance_id: str) -> ActionResult:
        with self._lock_for(instance_id):
            instance = self._require(instance_id)
            self._ensure_settled(instance)
            try:
                self._start_locked(instance)
            except AlreadyInState as e:
                container = self._container(instance)
                self.console.attach(instance.id, instance.container_name, since=started_at(container))
                return ActionResult(instance_id=instance_id, action="start", changed=False,
                                    status=InstanceStatus.RUNNING, message=e.message)
            return ActionResult(instance_id=instance_id, action="start", status=InstanceStatus.RUNNING)

    def _start_locked(self, instance: Instance):
        container = self._container(instance)
        if container.status == "running":
            raise AlreadyInState(instance.id, "running")

        since = time.time()
        with runtime_errors("start", instance.container_name):
            container.start()
            running = self._await_status(container, True, config.START_CONFIRM_TIMEOUT)
        if not running:
            logger.error(f"[Engine] {instance.container_name} did not reach running (status={container.status})")
            raise RuntimeRejected(f"instance '{instance.id}' did not reach running state")

        self._save(instance, InstanceStatus.RUNNING)
        self.console.attach(instance.id, instance.container_name, since=since)
        self.store.log_action(instance.id, "start")
        logger.info(f"[Engine] Started: {instance.container_name}")

    def stop(self, instance_id: str) -> ActionResult:
        with self._lock_for(instance_id):
            instance = self._require(instance_id)
            self._ensure_settled(instance)
            try:
                self._stop_locked(instance)
            except AlreadyInState as e:
                return ActionResult(instance_id=instance_id, action="stop", changed=False,
                                    status=InstanceStatus.STOPPED, message=e.message)
            return ActionResult(instance_id=instance_id, action="stop", status=InstanceStatus.STOPPED)

    def _stop_locked(self, instance: Instance):
        container = self._container(instance)
        if container.status != "running":
            self.console.detach(instance.id)
            raise AlreadyInState(instance.id, "stopped")

        self.console.detach(instance.id)
        with runtime_errors("stop", instance.container_name):
            self._graceful_stop(instance, container)
        self._save(instance, InstanceStatus.STOPPED)
        self.store.log_action(instance.id, "stop")
        logger.info(f"[Engine] Stopped: {instance.container_name}")

    def _graceful_stop(self, instance: Instance, container):
        """Blueprint stop signal/command first, runtime stop if it does not exit in time."""
        stop = (instance.blueprint.stop or "").strip()
        signal = _SIGNALS.get(stop.upper()) or (stop.upper() if stop.upper().startswith("SIG") else None)
        if signal:
            container.kill(signal=signal)
        elif stop:
            try:
                self._write_stdin(container, stop)
            except OSError as e:
                logger.warning(f"[Engine] Could not send stop command to {instance.container_name}: {e}")

        if not self._await_status(container, False, config.STOP_TIMEOUT):
            logger.warning(f"[Engine] {instance.container_name} ignored '{stop}', stopping via runtime")
            container.stop(timeout=config.STOP_TIMEOUT)

    def _write_stdin(self, container, text: str):
        sock = container.attach_socket(params={"stdin": 1, "stream": 1})
        try:
            raw = getattr(sock, "_sock", sock)
            raw.sendall((text + "\n").encode("utf-8"))
        finally:
            sock.close()

    def restart(self, instance_id: str) -> ActionResult:
        with self._lock_for(instance_id):
            instance = self._require(instance_id)
            self._ensure_settled(instance)
            container = self._container(instance)

            self.console.detach(instance.id)
            since = time.time()
            with runtime_errors("restart", instance.container_name):
                container.restart(timeout=config.STOP_TIMEOUT)
                running = self._await_status(container, True, config.START_CONFIRM_TIMEOUT)
            if not running:
                self._save(instance, InstanceStatus.STOPPED)
                raise RuntimeRejected(f"instance '{instance.id}' did not come back after restart")

            self._save(instance, InstanceStatus.RUNNING)
            self.console.attach(instance.id, instance.container_name, since=since)
            self.store.log_action(instance.id, "restart")
            logger.info(f"[Engine] Restarted: {instance.container_name}")
            return ActionResult(instance_id=instance_id, action="restart", status=InstanceStatus.RUNNING)

    # ── Delete / Recreate ────────────────────────────────

    def delete(self, instance_id: str) -> ActionResult:
        """
        Tear down an instance: console first, then container, data, record.
        A creation still installing is cancelled and cleans up after itself.
        """
        cancel = self._cancel.get(instance_id)
        if cancel is not None:
            logger.info(f"[Engine] Cancelling in-flight provisioning of {instance_id}")
            cancel.set()

        with self._lock_for(instance_id):
            instance = self.store.get(instance_id)
            if instance is None:
                if cancel is None:
                    raise NotFoundError("instance", instance_id)
                return ActionResult(instance_id=instance_id, action="delete",
                                    status=InstanceStatus.ABSENT, message="provisioning cancelled")

            self._save(instance, InstanceStatus.DELETING)
            self.console.detach(instance.id)
            self._remove_container(instance)
            shutil.rmtree(self.data_dir(instance.id), ignore_errors=True)
            self.store.delete(instance.id)
            self.console.forget(instance.id)
            self.store.log_action(instance.id, "delete")
            logger.info(f"[Engine] Deleted instance {instance.id} ({instance.name})")

        with self._locks_guard:
            self._locks.pop(instance_id, None)
        return ActionResult(instance_id=instance_id, action="delete", status=InstanceStatus.ABSENT)

    def recreate(self, instance_id: str) -> ActionResult:
        """Rebuild the container from the persisted record, without reinstalling."""
        with self._lock_for(instance_id):
            instance = self._require(instance_id)
            self._ensure_settled(instance)
            self._recreate_locked(instance)
            return ActionResult(instance_id=instance_id, action="recreate", status=InstanceStatus.STOPPED)

    def _recreate_locked(self, instance: Instance):
        # The old container stays until a replacement image is in hand
        resolver = ImageResolver(self.client)
        preferred = [instance.image] if instance.image else []
        preferred += [i for i in instance.blueprint.images if i not in preferred]
        with runtime_errors("recreate", instance.container_name):
            image = resolver.resolve(preferred)

        self.console.detach(instance.id)
        self._remove_container(instance)
        instance.image = image
        if not instance.startup_override:
            instance.startup_command = self._compile(instance)
        self._create_container(instance)
        self._save(instance, InstanceStatus.STOPPED)
        self.store.log_action(instance.id, "recreate", f"image={instance.image}")
        logger.info(f"[Engine] Recreated: {instance.container_name}")

    # ── Settings ─────────────────────────────────────────

    def get_settings(self, instance_id: str) -> dict:
        instance = self._require(instance_id)
        hidden = {v.env_variable for v in instance.blueprint.variables if not v.user_viewable}
        return {
            "startup_command": instance.startup_command,
            "startup_template": instance.blueprint.startup,
            "startup_override": instance.startup_override,
            "environment": {k: v for k, v in instance.environment.items() if k not in hidden},
            "variables": [v.model_dump() for v in instance.blueprint.variables if v.user_viewable],
            "memory_mb": instance.limits.memory_mb,
            "cpu": instance.limits.cpu,
            "disk_mb": instance.limits.disk_mb,
            "ports": [p.model_dump() for p in instance.ports],
            "image": instance.image,
        }

    def update_settings(self, instance_id: str, update: SettingsUpdate) -> Instance:
        """
        Persist new settings and rebuild the container so they take effect.
        A running instance is started again afterwards.
        """
        with self._lock_for(instance_id):
            instance = self._require(instance_id)
            self._ensure_settled(instance)

            if update.environment is not None:
                merged = {**instance.environment, **update.environment}
                instance.environment = resolve_variables(instance.blueprint, merged)
            if update.memory_mb is not None:
                instance.limits.memory_mb = update.memory_mb
            if update.cpu is not None:
                instance.limits.cpu = update.cpu
            if update.disk_mb is not None:
                instance.limits.disk_mb = update.disk_mb
            if update.startup_command is not None:
                instance.startup_override = bool(update.startup_command.strip())
                instance.startup_command = update.startup_command.strip()

            with self._ports_lock:
                if update.ports is not None:
                    validate_ports(update.ports)
                    self._check_port_conflicts(instance.id, update.ports)
                    instance.ports = list(update.ports)
                self._save(instance)
            self.store.log_action(instance.id, "settings")

            was_running = self.derive_status(instance) == InstanceStatus.RUNNING
            self._recreate_locked(instance)
            if was_running:
                self._start_locked(instance)
            instance.status = self.derive_status(instance)
            return instance

    # ── Console / Commands ───────────────────────────────

    def attach_console(self, instance_id: str, callback):
        """Subscribe to an instance's console; returns (history, unsubscribe)."""
        instance = self._require(instance_id)
        if self.derive_status(instance) == InstanceStatus.RUNNING and not self.console.is_attached(instance.id):
            self.console.attach(instance.id, instance.container_name,
                                since=started_at(self._container(instance)))
        unsubscribe = self.console.subscribe(instance.id, callback)
        return self.console.history(instance.id), unsubscribe

    def send_command(self, instance_id: str, command: str) -> CommandResult:
        if not command or not command.strip():
            raise InvalidSpecError("command is required")
        instance = self._require(instance_id)
        container = self._container(instance)
        if container.status != "running":
            raise InvalidSpecError(f"instance '{instance_id}' is not running")

        with runtime_errors("exec", instance.container_name):
            result = container.exec_run(["sh", "-c", command], workdir=config.CONTAINER_HOME)
        output = (result.output or b"").decode("utf-8", errors="replace")
        for line in clean_lines(output):
            self.console.publish(instance.id, line, kind="command_result")
        self.store.log_action(instance.id, "command", command[:200])
        return CommandResult(instance_id=instance_id, command=command,
                             exit_code=result.exit_code, output=output.strip())

    def get_logs(self, instance_id: str, tail: int = 100) -> List[str]:
        instance = self._require(instance_id)
        container = self._container(instance)
        with runtime_errors("logs", instance.container_name):
            raw = container.logs(stdout=True, stderr=True, tail=tail)
        return clean_lines(raw)

    def _on_console_exit(self, instance_id: str):
        # Runs on the poller thread; must not take the instance lock
        logger.warning(f"[Engine] Instance {instance_id} exited while attached")
        self.store.log_action(instance_id, "exited")

    # ── Recovery ─────────────────────────────────────────

    def recover(self) -> dict:
        """
        Rebuild runtime state after a service restart.

        installing → creation was interrupted: cleaned up like a failed one
        deleting   → teardown finished
        running    → console poller reattached
        """
        recovered, cleaned = 0, 0
        for instance in self.store.list():
            if instance.status == InstanceStatus.INSTALLING:
                self._abort_creation(instance, ProvisioningCancelled("interrupted by restart"))
                cleaned += 1
                continue
            if instance.status == InstanceStatus.DELETING:
                try:
                    self.delete(instance.id)
                except RuntimeUnavailable as e:
                    logger.error(f"[Engine] Recovery: could not finish delete of {instance.id}: {e.message}")
                    continue
                cleaned += 1
                continue

            status = self.derive_status(instance)
            if status == InstanceStatus.RUNNING:
                # No history yet, so the untimed tail is wanted here
                self.console.attach(instance.id, instance.container_name)
                recovered += 1
            if status in (InstanceStatus.RUNNING, InstanceStatus.STOPPED) and status != instance.status:
                self._save(instance, status)

        logger.info(f"[Engine] Recovery complete: {recovered} reattached, {cleaned} cleaned up")
        return {"recovered": recovered, "cleaned": cleaned}

    def shutdown(self):
        self.console.shutdown()


# ── Singleton ─────────────────────────────────────────────

_manager: Optional[LifecycleManager] = None
_manager_lock = threading.Lock()


def get_manager() -> LifecycleManager:
    global _manager
    if _manager is None:
        with _manager_lock:
            if _manager is None:
                _manager = LifecycleManager()
    return _manager


def set_manager(manager: Optional[LifecycleManager]) -> None:
    global _manager
    with _manager_lock:
        _manager = manager
