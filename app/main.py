# app/main.py

from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi import FastAPI
from api.routes import auth, friendship, chat
from api.exception_handlers import register_exception_handlers
from infrastructure.redis_connection import redis_connection
from infrastructure.postgres_connection import postgres_connection
from infrastructure.message_broker import RedisBridge, conversation_broker
from config.settings import settings
import socketio
import asyncio
import logging

logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events"""
    # Startup: Initialize connections
    await redis_connection.connect()
    await postgres_connection.connect()

    # Optional Redis pub/sub relay so several processes share conversation channels
    bridge = None
    bridge_task = None
    if settings.REALTIME_REDIS_BRIDGE:
        bridge = RedisBridge(redis_connection.get_client(), conversation_broker)
        bridge_task = asyncio.create_task(bridge.start())
        conversation_broker.attach_bridge(bridge)
        logger.info("Realtime Redis bridge started")

    yield

    # Shutdown: Stop background tasks and close connections
    if bridge is not None:
        conversation_broker.attach_bridge(None)
        bridge.stop()
        bridge_task.cancel()
        try:
            await asyncio.wait_for(bridge_task, timeout=5.0)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            pass

    conversation_broker.close_all()
    await postgres_connection.disconnect()
    await redis_connection.disconnect()


fastapi_app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Register domain exception handlers
register_exception_handlers(fastapi_app)


# Health check endpoint
@fastapi_app.get("/health")
async def health_check():
    """Health check endpoint for Docker and monitoring"""
    return {"status": "healthy"}


# CORS configuration - can't use "*" with allow_credentials=True
fastapi_app.add_middleware(
    middleware_class=CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

fastapi_app.include_router(auth.users_router, prefix=settings.API_PREFIX)
fastapi_app.include_router(friendship.friendship_router, prefix=settings.API_PREFIX)
fastapi_app.include_router(chat.router, prefix=settings.API_PREFIX)

# Import Socket.IO instance and register all namespaces
from api.socketio import sio

# Wrap FastAPI app with Socket.IO
# Socket.IO handles /socket.io/* paths and passes everything else to FastAPI
app = socketio.ASGIApp(sio, fastapi_app)
