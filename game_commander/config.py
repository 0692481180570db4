# config.py
"""
Game Commander configuration.

All settings in one place, overridable through environment variables.
"""

import os

# ============================================================
# PATHS
# ============================================================

EGGS_PATH = os.environ.get("COMMANDER_EGGS_PATH", os.path.abspath("eggs"))
DATA_PATH = os.environ.get("COMMANDER_DATA_PATH", os.path.abspath("server-data"))
DB_PATH = os.environ.get("COMMANDER_DB_PATH", os.path.abspath(os.path.join("data", "commander.db")))
INSTALL_SCRIPTS_PATH = os.environ.get(
    "COMMANDER_INSTALL_SCRIPTS_PATH", os.path.abspath(os.path.join("data", "install-scripts"))
)

# ============================================================
# CONTAINER NAMING / RUNTIME
# ============================================================

CONTAINER_PREFIX = os.environ.get("COMMANDER_CONTAINER_PREFIX", "game_server")
CONTAINER_USER = os.environ.get("COMMANDER_CONTAINER_USER", "1000:1000")
CONTAINER_HOME = os.environ.get("COMMANDER_CONTAINER_HOME", "/home/container")
INSTALL_MOUNT = "/mnt/server"
INSTALL_SCRIPT_MOUNT = "/mnt/install"
MANAGED_LABEL = "game_commander.managed"

# ============================================================
# TIMEOUTS
# ============================================================

INSTALL_TIMEOUT = int(os.environ.get("COMMANDER_INSTALL_TIMEOUT", "900"))
STOP_TIMEOUT = int(os.environ.get("COMMANDER_STOP_TIMEOUT", "10"))
START_CONFIRM_TIMEOUT = float(os.environ.get("COMMANDER_START_CONFIRM_TIMEOUT", "10"))
RUNTIME_POLL_INTERVAL = float(os.environ.get("COMMANDER_RUNTIME_POLL_INTERVAL", "0.5"))

# ============================================================
# CONSOLE
# ============================================================

LOG_POLL_INTERVAL = float(os.environ.get("COMMANDER_LOG_POLL_INTERVAL", "1.0"))
LOG_TAIL = int(os.environ.get("COMMANDER_LOG_TAIL", "200"))
CONSOLE_HISTORY = int(os.environ.get("COMMANDER_CONSOLE_HISTORY", "500"))

# ============================================================
# FILES
# ============================================================

MAX_READ_BYTES = int(os.environ.get("COMMANDER_MAX_READ_BYTES", str(5 * 1024 * 1024)))

# ============================================================
# RESOURCE DEFAULTS
# ============================================================

DEFAULT_MEMORY_MB = int(os.environ.get("COMMANDER_DEFAULT_MEMORY_MB", "1024"))
DEFAULT_CPU = int(os.environ.get("COMMANDER_DEFAULT_CPU", "100"))  # percent of one core
DEFAULT_DISK_MB = int(os.environ.get("COMMANDER_DEFAULT_DISK_MB", "5000"))
ENFORCE_DISK_QUOTA = os.environ.get("COMMANDER_ENFORCE_DISK_QUOTA", "false").lower() == "true"

# ============================================================
# LOGGING
# ============================================================

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"

# ============================================================
# SERVER
# ============================================================

HOST = os.environ.get("COMMANDER_HOST", "0.0.0.0")
PORT = int(os.environ.get("COMMANDER_PORT", "8300"))
