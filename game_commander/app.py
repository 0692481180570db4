"""
Game Commander API
Management API for game-server instances

Provides:
- Blueprint catalog (/api/blueprints/*)
- Instance lifecycle, settings, commands, files (/api/instances/*)
- Live console (/ws/console)
- Health (/api/health)
"""

import asyncio
import logging

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .engine import get_manager
from .errors import CommanderError
from .routes import router
from .ws_stream import ws_handler

# Setup logging
logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Game Commander API",
    description="Provisioning and lifecycle management for containerized game servers",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using wildcard
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api")


@app.websocket("/ws/console")
async def console_socket(websocket: WebSocket):
    await ws_handler(websocket)


@app.on_event("startup")
async def startup_event():
    logger.info("=" * 60)
    logger.info("Game Commander API Starting...")
    logger.info(f"Blueprints: {config.EGGS_PATH}")
    logger.info(f"Server data: {config.DATA_PATH}")
    logger.info("=" * 60)

    # Runs in a background thread so Docker unavailability doesn't block startup.
    async def _recover():
        try:
            result = await asyncio.to_thread(get_manager().recover)
            logger.info(f"[Startup] Instance recovery: {result}")
        except CommanderError as e:
            logger.warning(f"[Startup] Instance recovery failed: {e.message}")

    asyncio.create_task(_recover())


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("Game Commander API shutting down...")
    get_manager().shutdown()


def main():
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
