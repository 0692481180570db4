"""
Game Commander — Pydantic Models
═══════════════════════════════════
Defines the data structures for:
- Blueprint: declarative game-server template ("egg")
- Instance: one provisioned server, the persisted source of truth
- ResourceLimits / PortMapping: per-instance runtime constraints
- API request/response shapes
"""

from __future__ import annotations
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from datetime import datetime, timezone

from . import config


# ── Enums ──────────────────────────────────────────────────

class InstanceStatus(str, Enum):
    CREATED = "created"        # Record persisted, nothing installed yet
    INSTALLING = "installing"  # Install container running
    STOPPED = "stopped"        # Container exists, not running
    RUNNING = "running"        # Runtime reports the container running
    DELETING = "deleting"      # Teardown in progress
    ABSENT = "absent"          # Deleted or never provisioned (terminal)
    OFFLINE = "offline"        # Record exists, container could not be found


# ── Blueprint ─────────────────────────────────────────────

class VariableDef(BaseModel):
    """One entry of a blueprint's variable schema."""
    name: str = Field(..., description="Human readable name")
    env_variable: str = Field(..., description="Environment key inside the container")
    description: str = ""
    default_value: str = ""
    required: bool = False
    rules: str = Field(default="", description="Validation rules, e.g. 'required|string|max:20'")
    user_viewable: bool = True
    user_editable: bool = True


class InstallDescriptor(BaseModel):
    """Optional installation phase of a blueprint."""
    container: str = Field(default="", description="Install image (empty = general-purpose default)")
    entrypoint: str = Field(default="bash")
    script: str = Field(default="")


class Blueprint(BaseModel):
    """
    Game-server blueprint. Immutable once loaded; instances keep a snapshot.
    """
    id: str = Field(..., description="Catalog reference, e.g. 'minecraft/java/paper'")
    name: str = Field(..., description="Display name")
    description: str = ""
    author: str = ""
    images: List[str] = Field(default_factory=list, description="Ordered runtime image candidates")
    variables: List[VariableDef] = Field(default_factory=list)
    install: Optional[InstallDescriptor] = None
    startup: str = Field(default="", description="Startup template with {{VAR}} placeholders")
    stop: str = Field(default="^C", description="Console stop command or ^C / SIG* signal")
    category: str = ""

    model_config = {"frozen": True}


# ── Instance ──────────────────────────────────────────────

class PortMapping(BaseModel):
    internal: int = Field(..., ge=1, le=65535)
    external: int = Field(..., ge=1, le=65535)
    protocol: str = Field(default="tcp")

    @field_validator("protocol")
    @classmethod
    def _check_protocol(cls, v: str) -> str:
        v = v.lower()
        if v not in ("tcp", "udp"):
            raise ValueError("protocol must be tcp or udp")
        return v


class ResourceLimits(BaseModel):
    """Hard resource constraints for an instance container."""
    memory_mb: int = Field(default_factory=lambda: config.DEFAULT_MEMORY_MB, ge=64)
    cpu: int = Field(default_factory=lambda: config.DEFAULT_CPU, ge=0, description="Percent of one core, 0 = unlimited")
    disk_mb: int = Field(default_factory=lambda: config.DEFAULT_DISK_MB, ge=0)


class Instance(BaseModel):
    """A provisioned game server. Persisted record; status is re-derived on read."""
    id: str
    name: str
    blueprint: Blueprint
    environment: Dict[str, str] = Field(default_factory=dict)
    ports: List[PortMapping] = Field(default_factory=list)
    limits: ResourceLimits = Field(default_factory=ResourceLimits)
    startup_command: str = Field(default="", description="Compiled command (or operator override)")
    startup_override: bool = False
    image: str = Field(default="", description="Resolved runtime image of the last (re)creation")
    status: InstanceStatus = InstanceStatus.CREATED
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def container_name(self) -> str:
        return f"{config.CONTAINER_PREFIX}_{self.id}"

    @property
    def primary_port(self) -> Optional[int]:
        return self.ports[0].external if self.ports else None


# ── Console ───────────────────────────────────────────────

class ConsoleLine(BaseModel):
    instance_id: str
    line: str
    kind: str = "output"  # output | command_result | event
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


# ── Files ─────────────────────────────────────────────────

class FileEntry(BaseModel):
    name: str
    type: str  # file | directory
    size: int = 0
    modified: str = ""


# ── API Request/Response Models ───────────────────────────

class CreateInstanceRequest(BaseModel):
    name: str
    blueprint: str
    environment: Dict[str, str] = Field(default_factory=dict)
    ports: List[PortMapping] = Field(default_factory=list)
    limits: ResourceLimits = Field(default_factory=ResourceLimits)


class SettingsUpdate(BaseModel):
    """Partial settings update; None means 'leave unchanged'."""
    startup_command: Optional[str] = None
    environment: Optional[Dict[str, str]] = None
    memory_mb: Optional[int] = Field(default=None, ge=64)
    cpu: Optional[int] = Field(default=None, ge=0)
    disk_mb: Optional[int] = Field(default=None, ge=0)
    ports: Optional[List[PortMapping]] = None


class ActionResult(BaseModel):
    instance_id: str
    action: str
    changed: bool = True
    status: InstanceStatus
    message: str = ""


class CommandResult(BaseModel):
    instance_id: str
    command: str
    exit_code: int
    output: str = ""
