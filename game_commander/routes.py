"""
Game Commander — REST API Routes
═══════════════════════════════════
FastAPI router for the blueprint catalog, instance lifecycle, console
commands, settings and sandboxed file access.
Mounted at /api in app.py
"""

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from . import blueprint_store
from .docker_client import is_docker_available
from .engine import get_manager
from .errors import CommanderError
from .models import CreateInstanceRequest, SettingsUpdate

logger = logging.getLogger(__name__)
router = APIRouter()

ERROR_STATUS = {
    "not_found": 404,
    "invalid_spec": 400,
    "image_resolution_exhausted": 502,
    "installation_failed": 422,
    "access_denied": 403,
    "runtime_unavailable": 503,
    "runtime_rejected": 409,
    "cancelled": 409,
    "file_too_large": 413,
    "already_in_state": 409,
}


def _error(e: CommanderError) -> JSONResponse:
    status = ERROR_STATUS.get(e.kind, 500)
    if status >= 500:
        logger.error(f"[API] {e.kind}: {e.message}")
    return JSONResponse(e.to_dict(), status_code=status)


def _invalid(e: Exception) -> JSONResponse:
    return JSONResponse({"error": "invalid_spec", "message": str(e)}, status_code=400)


# ═══════════════════════════════════════════════════════════
# HEALTH
# ═══════════════════════════════════════════════════════════

@router.get("/health")
async def api_health():
    docker_ok = await asyncio.to_thread(is_docker_available)
    return {"status": "ok" if docker_ok else "degraded", "docker": docker_ok}


# ═══════════════════════════════════════════════════════════
# BLUEPRINT ENDPOINTS
# ═══════════════════════════════════════════════════════════

@router.get("/blueprints")
async def api_list_blueprints():
    bps = await asyncio.to_thread(blueprint_store.list_blueprints, get_manager().eggs_path)
    return {"blueprints": [bp.model_dump() for bp in bps], "count": len(bps)}


@router.get("/blueprints/tree")
async def api_blueprint_tree():
    return {"tree": await asyncio.to_thread(blueprint_store.catalog_tree, get_manager().eggs_path)}


@router.get("/blueprints/{blueprint_ref:path}")
async def api_get_blueprint(blueprint_ref: str):
    try:
        bp = blueprint_store.resolve_blueprint(blueprint_ref, get_manager().eggs_path)
        return bp.model_dump()
    except CommanderError as e:
        return _error(e)


# ═══════════════════════════════════════════════════════════
# INSTANCE ENDPOINTS
# ═══════════════════════════════════════════════════════════

@router.get("/instances")
async def api_list_instances():
    instances = await asyncio.to_thread(get_manager().list_instances)
    return {"instances": [i.model_dump() for i in instances], "count": len(instances)}


@router.post("/instances")
async def api_create_instance(request: Request):
    try:
        req = CreateInstanceRequest(**(await request.json()))
    except (ValidationError, ValueError, TypeError) as e:
        return _invalid(e)
    try:
        instance = await asyncio.to_thread(
            get_manager().create_instance,
            req.name, req.blueprint, req.environment, req.ports, req.limits,
        )
        return JSONResponse({"created": True, "instance": instance.model_dump()}, status_code=201)
    except CommanderError as e:
        return _error(e)


@router.get("/instances/{instance_id}")
async def api_get_instance(instance_id: str):
    try:
        instance = await asyncio.to_thread(get_manager().get_instance, instance_id)
        return instance.model_dump()
    except CommanderError as e:
        return _error(e)


@router.delete("/instances/{instance_id}")
async def api_delete_instance(instance_id: str):
    try:
        result = await asyncio.to_thread(get_manager().delete, instance_id)
        return result.model_dump()
    except CommanderError as e:
        return _error(e)


async def _action(instance_id: str, action: str):
    try:
        fn = getattr(get_manager(), action)
        result = await asyncio.to_thread(fn, instance_id)
        return result.model_dump()
    except CommanderError as e:
        return _error(e)


@router.post("/instances/{instance_id}/start")
async def api_start(instance_id: str):
    return await _action(instance_id, "start")


@router.post("/instances/{instance_id}/stop")
async def api_stop(instance_id: str):
    return await _action(instance_id, "stop")


@router.post("/instances/{instance_id}/restart")
async def api_restart(instance_id: str):
    return await _action(instance_id, "restart")


@router.post("/instances/{instance_id}/recreate")
async def api_recreate(instance_id: str):
    return await _action(instance_id, "recreate")


@router.post("/instances/{instance_id}/command")
async def api_command(instance_id: str, request: Request):
    data = await request.json()
    try:
        result = await asyncio.to_thread(get_manager().send_command, instance_id, data.get("command", ""))
        return result.model_dump()
    except CommanderError as e:
        return _error(e)


@router.get("/instances/{instance_id}/logs")
async def api_logs(instance_id: str, tail: int = 100):
    try:
        lines = await asyncio.to_thread(get_manager().get_logs, instance_id, tail)
        return {"instance_id": instance_id, "lines": lines}
    except CommanderError as e:
        return _error(e)


@router.get("/instances/{instance_id}/settings")
async def api_get_settings(instance_id: str):
    try:
        return get_manager().get_settings(instance_id)
    except CommanderError as e:
        return _error(e)


@router.put("/instances/{instance_id}/settings")
async def api_update_settings(instance_id: str, request: Request):
    try:
        update = SettingsUpdate(**(await request.json()))
    except (ValidationError, ValueError, TypeError) as e:
        return _invalid(e)
    try:
        instance = await asyncio.to_thread(get_manager().update_settings, instance_id, update)
        return {"updated": True, "instance": instance.model_dump()}
    except CommanderError as e:
        return _error(e)


# ═══════════════════════════════════════════════════════════
# FILE ENDPOINTS
# ═══════════════════════════════════════════════════════════

@router.get("/instances/{instance_id}/files")
async def api_list_files(instance_id: str, path: str = ""):
    try:
        entries = get_manager().files.list(instance_id, path)
        return {"path": path, "entries": [e.model_dump() for e in entries]}
    except CommanderError as e:
        return _error(e)


@router.get("/instances/{instance_id}/files/content")
async def api_read_file(instance_id: str, path: str):
    try:
        return PlainTextResponse(get_manager().files.read(instance_id, path))
    except CommanderError as e:
        return _error(e)


@router.put("/instances/{instance_id}/files/content")
async def api_write_file(instance_id: str, path: str, request: Request):
    body = await request.body()
    try:
        entry = get_manager().files.write(instance_id, path, body)
        return {"written": True, "entry": entry.model_dump()}
    except CommanderError as e:
        return _error(e)


@router.post("/instances/{instance_id}/files/directory")
async def api_mkdir(instance_id: str, path: str):
    try:
        entry = get_manager().files.mkdir(instance_id, path)
        return {"created": True, "entry": entry.model_dump()}
    except CommanderError as e:
        return _error(e)


@router.delete("/instances/{instance_id}/files")
async def api_delete_file(instance_id: str, path: str):
    try:
        get_manager().files.delete(instance_id, path)
        return {"deleted": True, "path": path}
    except CommanderError as e:
        return _error(e)


# ═══════════════════════════════════════════════════════════
# AUDIT
# ═══════════════════════════════════════════════════════════

@router.get("/audit")
async def api_audit(instance_id: Optional[str] = None, limit: int = 50):
    entries = get_manager().store.get_audit_log(instance_id, limit)
    return {"entries": entries, "count": len(entries)}
