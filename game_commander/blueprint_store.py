"""
Game Commander — Blueprint Store (file catalog)
═══════════════════════════════════════════════════
Loads blueprints from the catalog directory:
- Pterodactyl-style eggs:  <category>/.../egg-<name>.json
- Native YAML blueprints:  <category>/.../<name>.yaml

The reference of a blueprint is its category path plus name
("minecraft/java/paper"). Blueprints without a display name or without a
single runtime image are never handed out.
"""

import os
import re
import json
import logging
from typing import Optional, List, Dict, Tuple

import yaml
from pydantic import ValidationError

from . import config
from .errors import NotFoundError, InvalidSpecError
from .models import Blueprint, VariableDef, InstallDescriptor

logger = logging.getLogger(__name__)

EGG_PREFIX = "egg-"
_YAML_EXT = (".yaml", ".yml")


# ── Document → Model ──────────────────────────────────────

def _egg_images(data: dict) -> List[str]:
    images = data.get("docker_images")
    if isinstance(images, dict):
        return [str(v) for v in images.values() if v]
    if isinstance(images, list):
        return [str(v) for v in images if v]
    single = data.get("docker_image") or data.get("image")
    return [str(single)] if single else []


def _egg_stop(data: dict) -> str:
    cfg = data.get("config") or {}
    if isinstance(cfg, str):
        # Older eggs store config as an embedded JSON document
        try:
            cfg = json.loads(cfg)
        except ValueError:
            cfg = {}
    stop = cfg.get("stop") if isinstance(cfg, dict) else None
    return str(stop) if stop else "^C"


def _egg_install(data: dict) -> Optional[InstallDescriptor]:
    scripts = data.get("scripts") or {}
    inst = scripts.get("installation") if isinstance(scripts, dict) else None
    if not inst or not (inst.get("script") or "").strip():
        return None
    return InstallDescriptor(
        container=inst.get("container") or "",
        entrypoint=inst.get("entrypoint") or "bash",
        script=inst["script"],
    )


def _egg_variables(data: dict) -> List[VariableDef]:
    result = []
    for v in data.get("variables") or []:
        rules = v.get("rules") or ""
        result.append(VariableDef(
            name=v.get("name") or v.get("env_variable", ""),
            env_variable=v["env_variable"],
            description=v.get("description") or "",
            default_value="" if v.get("default_value") is None else str(v.get("default_value")),
            required="required" in rules.split("|"),
            rules=rules,
            user_viewable=bool(v.get("user_viewable", True)),
            user_editable=bool(v.get("user_editable", True)),
        ))
    return result


def _egg_to_blueprint(ref: str, category: str, data: dict) -> Blueprint:
    return Blueprint(
        id=ref,
        name=(data.get("name") or "").strip(),
        description=data.get("description") or "",
        author=data.get("author") or "",
        images=_egg_images(data),
        variables=_egg_variables(data),
        install=_egg_install(data),
        startup=data.get("startup") or "",
        stop=_egg_stop(data),
        category=category,
    )


def _yaml_to_blueprint(ref: str, category: str, data: dict) -> Blueprint:
    install = data.get("install")
    return Blueprint(
        id=ref,
        name=(data.get("name") or "").strip(),
        description=data.get("description") or "",
        author=data.get("author") or "",
        images=[str(i) for i in data.get("images") or []],
        variables=[VariableDef(**v) for v in data.get("variables") or []],
        install=InstallDescriptor(**install) if install else None,
        startup=data.get("startup") or "",
        stop=str(data.get("stop") or "^C"),
        category=category,
    )


def _validate(bp: Blueprint) -> Blueprint:
    if not bp.name:
        # Unnamed blueprints are excluded, not defaulted
        raise NotFoundError("blueprint", bp.id)
    if not bp.images:
        raise InvalidSpecError(f"blueprint '{bp.id}' declares no runtime image")
    return bp


def _load_file(path: str, ref: str, category: str) -> Blueprint:
    try:
        with open(path, encoding="utf-8") as f:
            if path.endswith(_YAML_EXT):
                data = yaml.safe_load(f)
                loader = _yaml_to_blueprint
            else:
                data = json.load(f)
                loader = _egg_to_blueprint
        if not isinstance(data, dict):
            raise InvalidSpecError(f"blueprint '{ref}' is not a mapping")
        return _validate(loader(ref, category, data))
    except (ValueError, yaml.YAMLError, KeyError, TypeError, ValidationError) as e:
        # json.JSONDecodeError is a ValueError
        logger.warning(f"[Blueprints] Malformed blueprint {path}: {e}")
        raise InvalidSpecError(f"blueprint '{ref}' is malformed") from e


# ── Lookup ─────────────────────────────────────────────────

def _candidate_paths(ref: str, root: str) -> List[Tuple[str, str]]:
    parts = [p for p in ref.strip("/").split("/") if p]
    if not parts or any(p in (".", "..") for p in parts):
        return []
    category = "/".join(parts[:-1])
    base = os.path.join(root, *parts[:-1])
    name = parts[-1]
    paths = [os.path.join(base, f"{EGG_PREFIX}{name}.json")]
    paths += [os.path.join(base, name + ext) for ext in _YAML_EXT]
    return [(p, category) for p in paths]


def resolve_blueprint(ref: str, root: Optional[str] = None) -> Blueprint:
    """
    Load and validate one blueprint by reference.

    Raises:
        NotFoundError: no such blueprint, or it has no display name
        InvalidSpecError: the document is malformed or declares no image
    """
    root = root or config.EGGS_PATH
    for path, category in _candidate_paths(ref, root):
        if os.path.isfile(path):
            return _load_file(path, ref.strip("/"), category)
    raise NotFoundError("blueprint", ref)


def list_blueprints(root: Optional[str] = None) -> List[Blueprint]:
    """Scan the catalog recursively; unusable documents are skipped."""
    root = root or config.EGGS_PATH
    found: List[Blueprint] = []
    if not os.path.isdir(root):
        logger.info(f"[Blueprints] Catalog directory not found: {root}")
        return found

    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        category = os.path.relpath(dirpath, root).replace(os.sep, "/")
        category = "" if category == "." else category
        for fname in sorted(filenames):
            if fname.startswith(EGG_PREFIX) and fname.endswith(".json"):
                name = fname[len(EGG_PREFIX):-len(".json")]
            elif fname.endswith(_YAML_EXT):
                name = os.path.splitext(fname)[0]
            else:
                continue
            ref = f"{category}/{name}" if category else name
            try:
                found.append(_load_file(os.path.join(dirpath, fname), ref, category))
            except (NotFoundError, InvalidSpecError) as e:
                logger.warning(f"[Blueprints] Skipping {ref}: {e.message}")

    logger.info(f"[Blueprints] Catalog scan found {len(found)} blueprints")
    return found


def catalog_tree(root: Optional[str] = None) -> Dict[str, List[dict]]:
    """Group usable blueprints by category for the UI."""
    tree: Dict[str, List[dict]] = {}
    for bp in list_blueprints(root):
        tree.setdefault(bp.category or "uncategorized", []).append({
            "id": bp.id,
            "name": bp.name,
            "description": bp.description,
            "author": bp.author,
            "image": bp.images[0],
        })
    return tree


# ── Variable Schema ────────────────────────────────────────

_INT_RE = re.compile(r"^-?\d+$")
_BOOL_VALUES = {"true", "false", "1", "0", "on", "off", "yes", "no"}


def _split_rules(rules: str) -> List[str]:
    parts = rules.split("|") if rules else []
    for i, part in enumerate(parts):
        if part.startswith("regex:"):
            # A regex may itself contain '|'
            return parts[:i] + ["|".join(parts[i:])]
    return parts


def _as_number(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None


def _check_rule(rule: str, value: str, numeric: bool) -> bool:
    name, _, arg = rule.partition(":")
    size = _as_number(value) if numeric else len(value)
    if name == "string":
        return True
    if name == "numeric":
        return _as_number(value) is not None
    if name == "integer":
        return bool(_INT_RE.match(value))
    if name == "boolean":
        return value.lower() in _BOOL_VALUES
    if name == "max":
        return size is not None and size <= float(arg)
    if name == "min":
        return size is not None and size >= float(arg)
    if name == "between":
        lo, hi = (float(x) for x in arg.split(","))
        return size is not None and lo <= size <= hi
    if name == "in":
        return value in arg.split(",")
    if name == "regex":
        m = re.match(r"^/(.*)/([a-z]*)$", arg, re.S)
        pattern, flags = (m.group(1), m.group(2)) if m else (arg, "")
        return re.search(pattern, value, re.I if "i" in flags else 0) is not None
    # Unknown rules (e.g. 'alpha_dash' variants) are not enforced
    return True


def validate_variable(var: VariableDef, value: str) -> Optional[str]:
    """Return an error string, or None if ``value`` satisfies ``var.rules``."""
    rules = _split_rules(var.rules)
    if value == "":
        if var.required or "required" in rules:
            return f"{var.env_variable} is required"
        return None
    numeric = any(r in ("numeric", "integer") for r in rules)
    for rule in rules:
        if rule in ("required", "nullable", "sometimes"):
            continue
        if not _check_rule(rule, value, numeric):
            return f"{var.env_variable} fails rule '{rule}'"
    return None


def resolve_variables(bp: Blueprint, supplied: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """
    Merge user values over schema defaults and validate them.
    Keys outside the schema are kept as-is.
    """
    supplied = {k: str(v) for k, v in (supplied or {}).items()}
    env: Dict[str, str] = {}
    errors = []
    for var in bp.variables:
        value = var.default_value
        if var.env_variable in supplied:
            if var.user_editable:
                value = supplied[var.env_variable]
            elif supplied[var.env_variable] != var.default_value:
                logger.warning(f"[Blueprints] Ignoring value for read-only variable {var.env_variable}")
        err = validate_variable(var, value)
        if err:
            errors.append(err)
        env[var.env_variable] = value

    for key, value in supplied.items():
        env.setdefault(key, value)

    if errors:
        raise InvalidSpecError("; ".join(errors))
    return env
