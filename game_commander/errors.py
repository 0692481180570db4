"""
Game Commander — Error Taxonomy
═══════════════════════════════════
Every failure carries a stable ``kind`` plus a message that is safe to show
to callers. Internal detail goes to the log, not into ``message``.
"""

from typing import List, Optional


class CommanderError(Exception):
    """Base class for all orchestrator failures."""
    kind = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"error": self.kind, "message": self.message}


class NotFoundError(CommanderError):
    """Blueprint, instance, container or file is absent."""
    kind = "not_found"

    def __init__(self, what: str, ident: str):
        self.what = what
        self.ident = ident
        super().__init__(f"{what} '{ident}' not found")


class InvalidSpecError(CommanderError):
    """Malformed blueprint or missing/invalid instance fields."""
    kind = "invalid_spec"


class ImageResolutionExhausted(CommanderError):
    """No candidate of the image chain could be found locally or pulled."""
    kind = "image_resolution_exhausted"

    def __init__(self, family: str, tried: List[str]):
        self.family = family
        self.tried = list(tried)
        super().__init__(
            f"no usable image for family '{family}' (tried: {', '.join(self.tried) or 'nothing'})"
        )


class InstallationFailed(CommanderError):
    """Install script exited nonzero or the install container could not run."""
    kind = "installation_failed"

    def __init__(self, message: str, exit_code: Optional[int] = None, output: str = ""):
        self.exit_code = exit_code
        self.output = output
        super().__init__(message)


class ProvisioningCancelled(CommanderError):
    """A delete interrupted an in-flight creation."""
    kind = "cancelled"


class AccessDenied(CommanderError):
    """A path tried to leave the instance data directory."""
    kind = "access_denied"

    def __init__(self, message: str = "access denied"):
        super().__init__(message)


class FileTooLarge(CommanderError):
    kind = "file_too_large"


class RuntimeUnavailable(CommanderError):
    """The container runtime itself is unreachable."""
    kind = "runtime_unavailable"


class RuntimeRejected(CommanderError):
    """The runtime answered but refused the operation."""
    kind = "runtime_rejected"


class AlreadyInState(CommanderError):
    """Idempotent no-op: the instance is already where the caller wants it."""
    kind = "already_in_state"

    def __init__(self, instance_id: str, state: str):
        self.instance_id = instance_id
        self.state = state
        super().__init__(f"instance '{instance_id}' is already {state}")
