"""
Game Commander — Startup Command Compiler
═════════════════════════════════════════════
Expands {{VAR}} placeholders of a blueprint startup template and emits the
pre-flight wrapper script the instance container runs as its command.

The wrapper:
  1. accepts the runtime license file (eula.txt) idempotently
  2. picks the launch artifact when the template uses the server-file
     placeholder (first existing file wins)
  3. exec's the compiled command so it becomes the container's PID 1
"""

import os
import re
import shlex
import logging
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*(?:env\.)?([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
SERVER_FILE_VARS = ("SERVER_JARFILE", "SERVER_FILE")
SERVER_FILE_TOKEN = "${SERVER_FILE}"
SERVER_FILE_CANDIDATES = (
    "server.jar",
    "paper.jar",
    "purpur.jar",
    "spigot.jar",
    "fabric-server-launch.jar",
    "forge.jar",
    "minecraft_server.jar",
)
LICENSE_FILE = "eula.txt"
LICENSE_MARKERS = ("-jar", "minecraft", "paper", "spigot", "bukkit", "forge", "fabric")
WRAPPER_NAME = ".commander-start.sh"
_COMPOUND_RE = re.compile(r"&&|\|\||[;|]")


def startup_values(
    variables: Dict[str, str],
    memory_mb: Optional[int] = None,
    port: Optional[int] = None,
    instance_id: str = "",
    ip: str = "0.0.0.0",
) -> Dict[str, str]:
    """Substitution table: user variables plus resource parameters."""
    values = dict(variables)
    if memory_mb is not None:
        values["SERVER_MEMORY"] = str(memory_mb)
    if port is not None:
        values["SERVER_PORT"] = str(port)
    values["SERVER_IP"] = ip
    if instance_id:
        values["P_SERVER_UUID"] = instance_id
    return values


def compile_startup(template: str, values: Dict[str, str]) -> str:
    """
    Textual placeholder substitution.

    Server-file placeholders become the ${SERVER_FILE} shell reference set by
    the wrapper. Unknown placeholders are left verbatim.
    """
    def _sub(m: re.Match) -> str:
        key = m.group(1)
        if key in SERVER_FILE_VARS:
            return SERVER_FILE_TOKEN
        if key in values:
            return values[key]
        return m.group(0)

    command = PLACEHOLDER_RE.sub(_sub, template).strip()
    leftover = unresolved_placeholders(command)
    if leftover:
        logger.warning(f"[Startup] Unresolved placeholders left in command: {leftover}")
    return command


def unresolved_placeholders(command: str) -> List[str]:
    return [m.group(1) for m in PLACEHOLDER_RE.finditer(command)]


def needs_license(template: str, blueprint_name: str = "") -> bool:
    haystack = f"{template} {blueprint_name}".lower()
    return any(marker in haystack for marker in LICENSE_MARKERS)


def build_wrapper(
    command: str,
    preferred_file: str = "",
    accept_license: bool = True,
    candidates: Iterable[str] = SERVER_FILE_CANDIDATES,
) -> str:
    """Render the pre-flight wrapper shell script for ``command``."""
    lines = [
        "#!/bin/sh",
        "# generated by game_commander, rewritten on every (re)creation",
        'cd "$(dirname "$0")" || exit 1',
    ]

    if accept_license:
        lines += [
            f"if [ -f {LICENSE_FILE} ]; then",
            f"    if grep -qi '^eula=false' {LICENSE_FILE}; then",
            f"        sed -i 's/^[Ee][Uu][Ll][Aa]=.*/eula=true/' {LICENSE_FILE}",
            "    fi",
            "else",
            f"    echo 'eula=true' > {LICENSE_FILE}",
            "fi",
        ]

    if SERVER_FILE_TOKEN in command:
        ordered = []
        for name in [preferred_file, *candidates]:
            if name and name not in ordered:
                ordered.append(name)
        default = shlex.quote(ordered[0])
        lines += [
            f"SERVER_FILE={default}",
            f"for f in {' '.join(shlex.quote(n) for n in ordered)}; do",
            '    if [ -f "$f" ]; then SERVER_FILE="$f"; break; fi',
            "done",
            "export SERVER_FILE",
        ]

    if _COMPOUND_RE.search(command):
        lines.append(f"exec /bin/sh -c {shlex.quote(command)}")
    else:
        lines.append(f"exec {command}")
    return "\n".join(lines) + "\n"


def write_wrapper(data_dir: str, script: str) -> str:
    """Write the wrapper into the instance data directory; returns its host path."""
    path = os.path.join(data_dir, WRAPPER_NAME)
    with open(path, "w", encoding="utf-8", newline="\n") as f:
        f.write(script)
    os.chmod(path, 0o755)
    return path


def ensure_license(data_dir: str) -> bool:
    """
    Make sure eula.txt is affirmative. Returns True when the file changed.

    Absent → created. Declined → flipped. Accepted → untouched.
    """
    path = os.path.join(data_dir, LICENSE_FILE)
    if not os.path.exists(path):
        with open(path, "w", encoding="utf-8") as f:
            f.write("eula=true\n")
        return True

    with open(path, encoding="utf-8", errors="replace") as f:
        content = f.read()
    if re.search(r"^eula\s*=\s*true\s*$", content, re.I | re.M):
        return False

    if re.search(r"^eula\s*=", content, re.I | re.M):
        content = re.sub(r"^eula\s*=.*$", "eula=true", content, flags=re.I | re.M)
    else:
        content = content.rstrip("\n") + ("\n" if content.strip() else "") + "eula=true\n"
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return True
