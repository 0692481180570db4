"""
Game Commander — Console Stream Supervisor
═════════════════════════════════════════════
Surfaces a running instance's stdout/stderr to subscribers.

Delivery is by polling the runtime's bounded log tail once per interval
instead of holding a follow-stream open; follow connections drop silently
with some log drivers. Each poll asks only for the window since the previous
poll, strips terminal escape sequences and publishes every non-empty line
stamped with the emission time.

One poller thread per running instance. attach() is idempotent; detach()
joins the thread, so once it returns no further poll can happen.
"""

import re
import time
import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

import requests
from docker.errors import APIError, NotFound

from . import config
from .models import ConsoleLine

logger = logging.getLogger(__name__)

_ESCAPE_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"          # CSI (colors, cursor movement)
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"  # OSC (window titles)
    r"|\x1b[@-Z\\-_]"                   # other two-byte escapes
    r"|[\x00-\x08\x0b-\x1f\x7f]"        # remaining control chars except \t and \n
)

Subscriber = Callable[[ConsoleLine], None]


def strip_escapes(text: str) -> str:
    return _ESCAPE_RE.sub("", text)


def clean_lines(raw) -> List[str]:
    """Decode a log chunk into non-empty, escape-free lines."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    raw = raw.replace("\r\n", "\n")
    lines = []
    for line in raw.split("\n"):
        line = strip_escapes(line).rstrip()
        if line.strip():
            lines.append(line)
    return lines


class _Poller:
    def __init__(self, instance_id: str, container_name: str):
        self.instance_id = instance_id
        self.container_name = container_name
        self.stop_event = threading.Event()
        self.since: Optional[float] = None
        self.thread: Optional[threading.Thread] = None


class ConsoleSupervisor:
    def __init__(
        self,
        get_client: Callable,
        interval: Optional[float] = None,
        tail: Optional[int] = None,
        history: Optional[int] = None,
        on_exit: Optional[Callable[[str], None]] = None,
    ):
        self._get_client = get_client
        self.interval = config.LOG_POLL_INTERVAL if interval is None else interval
        self.tail = tail or config.LOG_TAIL
        self.history_size = history or config.CONSOLE_HISTORY
        self.on_exit = on_exit

        self._lock = threading.Lock()
        self._pollers: Dict[str, _Poller] = {}
        self._subscribers: Dict[str, List[Subscriber]] = {}
        self._history: Dict[str, Deque[ConsoleLine]] = {}

    # ── Attach / Detach ──────────────────────────────────

    def attach(self, instance_id: str, container_name: str, since: Optional[float] = None) -> bool:
        """
        Start polling. Returns False if a poller is already running.

        ``since`` bounds the first window to output emitted after that epoch
        time. Without it the first tick reads the untimed tail, which is only
        wanted when there is no history yet (recovery after a restart).
        """
        with self._lock:
            existing = self._pollers.get(instance_id)
            if existing and existing.thread and existing.thread.is_alive():
                return False
            poller = _Poller(instance_id, container_name)
            poller.since = since
            poller.thread = threading.Thread(
                target=self._run, args=(poller,),
                name=f"console-{instance_id[:8]}", daemon=True,
            )
            self._pollers[instance_id] = poller
            poller.thread.start()
        logger.info(f"[Console] Attached to {container_name}")
        return True

    def detach(self, instance_id: str) -> bool:
        """Stop polling and wait for the poller to finish its current tick."""
        with self._lock:
            poller = self._pollers.pop(instance_id, None)
        if poller is None:
            return False
        poller.stop_event.set()
        if poller.thread is not None and poller.thread is not threading.current_thread():
            poller.thread.join()
        logger.info(f"[Console] Detached from {poller.container_name}")
        return True

    def is_attached(self, instance_id: str) -> bool:
        with self._lock:
            poller = self._pollers.get(instance_id)
            return bool(poller and poller.thread and poller.thread.is_alive())

    def shutdown(self):
        with self._lock:
            ids = list(self._pollers)
        for instance_id in ids:
            self.detach(instance_id)

    # ── Subscribers ──────────────────────────────────────

    def subscribe(self, instance_id: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for new lines; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.setdefault(instance_id, []).append(callback)

        def _unsubscribe():
            with self._lock:
                subs = self._subscribers.get(instance_id, [])
                if callback in subs:
                    subs.remove(callback)
        return _unsubscribe

    def history(self, instance_id: str) -> List[ConsoleLine]:
        with self._lock:
            return list(self._history.get(instance_id, ()))

    def forget(self, instance_id: str):
        """Drop history and subscribers of a deleted instance."""
        with self._lock:
            self._history.pop(instance_id, None)
            self._subscribers.pop(instance_id, None)

    def publish(self, instance_id: str, text: str, kind: str = "output") -> ConsoleLine:
        record = ConsoleLine(instance_id=instance_id, line=text, kind=kind)
        with self._lock:
            self._history.setdefault(
                instance_id, deque(maxlen=self.history_size)
            ).append(record)
            subs = list(self._subscribers.get(instance_id, []))
        for callback in subs:
            try:
                callback(record)
            except Exception as e:
                logger.warning(f"[Console] Dropping failing subscriber for {instance_id[:8]}: {e}")
                with self._lock:
                    live = self._subscribers.get(instance_id, [])
                    if callback in live:
                        live.remove(callback)
        return record

    # ── Polling ──────────────────────────────────────────

    def poll_once(self, poller: _Poller) -> bool:
        """
        One tick: fetch the log window since the last tick and publish it.
        Returns False once the container is gone or no longer running.
        """
        client = self._get_client()
        try:
            container = client.containers.get(poller.container_name)
        except NotFound:
            return False

        until = time.time()
        kwargs = {"stdout": True, "stderr": True, "tail": self.tail, "until": until}
        if poller.since is not None:
            kwargs["since"] = poller.since
        raw = container.logs(**kwargs)
        poller.since = until

        for line in clean_lines(raw):
            self.publish(poller.instance_id, line)
        return container.status == "running"

    def _run(self, poller: _Poller):
        while not poller.stop_event.is_set():
            try:
                alive = self.poll_once(poller)
            except (APIError, requests.exceptions.RequestException) as e:
                # Transient runtime hiccup: surface in the log, try again next tick
                logger.warning(f"[Console] Poll failed for {poller.container_name}: {e}")
                alive = True
            if not alive:
                self._handle_exit(poller)
                return
            poller.stop_event.wait(self.interval)

    def _handle_exit(self, poller: _Poller):
        with self._lock:
            if self._pollers.get(poller.instance_id) is poller:
                del self._pollers[poller.instance_id]
            else:
                # Detached concurrently; the detaching side owns the teardown
                return
        logger.info(f"[Console] {poller.container_name} is no longer running, poller stopped")
        self.publish(poller.instance_id, "server process exited", kind="event")
        if self.on_exit:
            try:
                self.on_exit(poller.instance_id)
            except Exception as e:
                logger.error(f"[Console] on_exit hook failed for {poller.instance_id}: {e}")
