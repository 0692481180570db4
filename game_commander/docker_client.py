"""
Docker client management.

Lazy, thread-safe singleton around ``docker.from_env()``.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Optional

import docker
import requests
from docker.errors import APIError, DockerException, NotFound

from .errors import NotFoundError, RuntimeRejected, RuntimeUnavailable

logger = logging.getLogger(__name__)

_client: Optional[docker.DockerClient] = None
_lock = threading.Lock()


def get_client() -> docker.DockerClient:
    """
    Get or create the Docker client.

    Raises:
        RuntimeUnavailable: the daemon cannot be reached
    """
    global _client
    if _client is not None:
        return _client

    with _lock:
        # Double-check after acquiring the lock
        if _client is not None:
            return _client
        try:
            client = docker.from_env()
            client.ping()
        except DockerException as e:
            logger.error(f"[Docker] Runtime not available: {e}")
            raise RuntimeUnavailable("container runtime is not reachable") from e
        _client = client
        logger.info("[Docker] Client initialized")
        return _client


def is_docker_available() -> bool:
    try:
        get_client().ping()
        return True
    except (RuntimeUnavailable, DockerException):
        return False


def reset_client() -> None:
    """Drop the cached client (after a daemon restart, or in tests)."""
    global _client
    with _lock:
        _client = None
        logger.info("[Docker] Client reset")


@contextmanager
def runtime_errors(action: str, target: str = ""):
    """
    Translate docker SDK failures into the commander taxonomy.

    NotFound → NotFoundError (recoverable, e.g. via recreate)
    APIError → RuntimeRejected (operator attention)
    connection failures → RuntimeUnavailable
    """
    try:
        yield
    except NotFound as e:
        raise NotFoundError("container", target) from e
    except APIError as e:
        logger.error(f"[Docker] Runtime rejected {action} for {target}: {e}")
        raise RuntimeRejected(f"runtime rejected {action} for '{target}'") from e
    except (DockerException, requests.exceptions.ConnectionError) as e:
        logger.error(f"[Docker] Runtime unavailable during {action} for {target}: {e}")
        raise RuntimeUnavailable("container runtime is not reachable") from e
