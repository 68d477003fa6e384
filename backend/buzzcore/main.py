"""FastAPI application entrypoint."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from buzzcore.api import discovery, meet, notifications, ops, presence, relationships
from buzzcore.api.errors import install_error_handlers
from buzzcore.container import get_container
from buzzcore.domain.live.sockets import LiveNamespace
from buzzcore.infra import postgres
from buzzcore.obs import init as obs_init
from buzzcore.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.storage_backend.lower() == "postgres":
		await postgres.init_pool()
	container = get_container()
	container.meet.start_sweeper()
	logger.info("buzzcore started", extra={"environment": settings.environment})
	try:
		yield
	finally:
		await container.aclose()
		await postgres.close_pool()


app = FastAPI(title="Buzz Proximity Core", lifespan=lifespan)
install_error_handlers(app)

allow_origins = list(getattr(settings, "cors_allow_origins", []))
if not allow_origins:
	allow_origins = ["http://localhost:3000"] if settings.is_dev() else ["https://app.buzz.example"]

# Starlette disallows wildcard '*' with allow_credentials=True.
if "*" in allow_origins:
	allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else ["https://app.buzz.example"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)
obs_init(app)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
live_namespace = LiveNamespace(get_container())
sio.register_namespace(live_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)

app.include_router(discovery.router, tags=["discovery"])
app.include_router(relationships.router, tags=["relationships"])
app.include_router(meet.router, tags=["meet"])
app.include_router(presence.router, tags=["presence"])
app.include_router(notifications.router, tags=["notifications"])
app.include_router(ops.router, tags=["ops"])
