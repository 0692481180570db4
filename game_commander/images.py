"""
Game Commander — Image Resolution
═════════════════════════════════════
Maps a blueprint's preferred image to one that is present locally, pulling
it when absent and walking an ordered fallback chain when the pull fails.

Fallback chains are data: one ordered list per logical runtime family,
ending in a universally available minimal image. New families are added to
FALLBACK_CHAINS, not to the resolution code.
"""

import re
import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

import requests
from docker.errors import APIError, ImageNotFound, NotFound

from .errors import ImageResolutionExhausted, ProvisioningCancelled, RuntimeUnavailable

logger = logging.getLogger(__name__)

MINIMAL_IMAGE = "alpine:latest"
INSTALLER_FAMILY = "installer"
GENERIC_FAMILY = "generic"


@dataclass(frozen=True)
class FallbackChain:
    """Ordered alternatives for one runtime family."""
    family: str
    patterns: Tuple[str, ...]
    images: Tuple[str, ...]

    def matches(self, ref: str) -> bool:
        return any(re.search(p, ref, re.I) for p in self.patterns)


FALLBACK_CHAINS: Tuple[FallbackChain, ...] = (
    FallbackChain(
        family="java",
        patterns=(r"java", r"temurin", r"openjdk", r"jdk", r"jre"),
        images=(
            "ghcr.io/pterodactyl/yolks:java_21",
            "ghcr.io/pterodactyl/yolks:java_17",
            "eclipse-temurin:21-jre",
            "eclipse-temurin:17-jre",
            MINIMAL_IMAGE,
        ),
    ),
    FallbackChain(
        family="nodejs",
        patterns=(r"node",),
        images=(
            "ghcr.io/pterodactyl/yolks:nodejs_20",
            "node:20-alpine",
            "node:18-alpine",
            MINIMAL_IMAGE,
        ),
    ),
    FallbackChain(
        family="python",
        patterns=(r"python",),
        images=(
            "ghcr.io/pterodactyl/yolks:python_3.12",
            "python:3.12-slim",
            "python:3.11-slim",
            MINIMAL_IMAGE,
        ),
    ),
    FallbackChain(
        family="wine",
        patterns=(r"wine", r"proton"),
        images=(
            "ghcr.io/pterodactyl/yolks:wine_latest",
            "ghcr.io/parkervcp/yolks:wine_latest",
            "debian:bookworm-slim",
            MINIMAL_IMAGE,
        ),
    ),
    FallbackChain(
        family=INSTALLER_FAMILY,
        patterns=(r"installers?:",),
        images=(
            "ghcr.io/pterodactyl/installers:debian",
            "ghcr.io/pterodactyl/installers:alpine",
            "debian:bookworm-slim",
            MINIMAL_IMAGE,
        ),
    ),
    FallbackChain(
        family=GENERIC_FAMILY,
        patterns=(),
        images=(
            "ghcr.io/pterodactyl/yolks:debian",
            "debian:bookworm-slim",
            MINIMAL_IMAGE,
        ),
    ),
)


def chain_for(family: str, chains: Sequence[FallbackChain] = FALLBACK_CHAINS) -> FallbackChain:
    """Chain of ``family``; unknown families use the generic chain."""
    by_family = {chain.family: chain for chain in chains}
    chain = by_family.get(family) or by_family.get(GENERIC_FAMILY)
    if chain is None:
        raise KeyError(family)
    return chain


def family_for(ref: str, chains: Sequence[FallbackChain] = FALLBACK_CHAINS) -> str:
    """Classify an image reference into its runtime family."""
    # Installer images are matched last so runtime families take precedence
    ordered = [c for c in chains if c.family not in (GENERIC_FAMILY, INSTALLER_FAMILY)]
    ordered += [c for c in chains if c.family == INSTALLER_FAMILY]
    for chain in ordered:
        if chain.matches(ref):
            return chain.family
    return GENERIC_FAMILY


@dataclass
class ImageResolver:
    """
    Resolves image references against one Docker client.

    One resolver lives for one provisioning attempt; its cache is dropped
    with it.
    """
    client: object
    chains: Sequence[FallbackChain] = FALLBACK_CHAINS
    cancel_event: Optional[threading.Event] = None
    _resolved: Dict[str, str] = field(default_factory=dict)
    _failed: Set[str] = field(default_factory=set)

    def _check_cancelled(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise ProvisioningCancelled("provisioning cancelled during image resolution")

    def is_present(self, ref: str) -> bool:
        try:
            self.client.images.get(ref)
            return True
        except (ImageNotFound, NotFound):
            return False
        except requests.exceptions.ConnectionError as e:
            raise RuntimeUnavailable("container runtime is not reachable") from e

    def ensure(self, ref: str) -> bool:
        """Present-or-pull. Never pulls an image that is already local."""
        if ref in self._failed:
            return False
        if self.is_present(ref):
            return True
        self._check_cancelled()
        logger.info(f"[Images] Pulling image: {ref}")
        try:
            self.client.images.pull(ref)
            return True
        except requests.exceptions.ConnectionError as e:
            raise RuntimeUnavailable("container runtime is not reachable") from e
        except APIError as e:
            # ImageNotFound and NotFound are APIError subclasses
            logger.warning(f"[Images] Pull failed for {ref}: {e}")
            self._failed.add(ref)
            return False

    def candidates(self, preferred: Sequence[str], family: Optional[str] = None) -> Tuple[str, List[str]]:
        """Preferred refs first, then the family chain, without duplicates."""
        preferred = [p for p in preferred if p]
        family = family or (family_for(preferred[0], self.chains) if preferred else GENERIC_FAMILY)
        ordered: List[str] = []
        for ref in list(preferred) + list(chain_for(family, self.chains).images):
            if ref not in ordered:
                ordered.append(ref)
        return family, ordered

    def resolve(self, preferred: Sequence[str], family: Optional[str] = None) -> str:
        """
        Return the first usable image of ``preferred`` + fallback chain.

        Raises:
            ImageResolutionExhausted: nothing in the chain could be resolved
        """
        if isinstance(preferred, str):
            preferred = [preferred]
        family, ordered = self.candidates(preferred, family)
        key = "|".join(ordered)
        if key in self._resolved:
            return self._resolved[key]

        tried = []
        for ref in ordered:
            self._check_cancelled()
            tried.append(ref)
            if self.ensure(ref):
                if preferred and ref != preferred[0]:
                    logger.warning(f"[Images] Using fallback {ref} instead of {preferred[0]}")
                self._resolved[key] = ref
                return ref

        logger.error(f"[Images] Fallback chain exhausted for family '{family}': {tried}")
        raise ImageResolutionExhausted(family, tried)
