from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase

from .channel import DeliveryChannel
from .config import Settings, get_settings
from .database import create_client, ensure_indexes, ping
from .errors import register_error_handlers
from .logger import setup_logging
from .presence import PresenceRegistry
from .relay import MessageRelay
from .rooms import RoomDirectory
from .routes import messages_router, presence_router, rooms_router
from .service import MessagingService
from .sockets import router as sockets_router
from .store import MessageStore
from .users import UserDirectory

logger = logging.getLogger(__name__)


def wire(app: FastAPI, db: AsyncIOMotorDatabase) -> MessagingService:
    """Build the messaging components around a database and hang them on app.state."""
    users = UserDirectory(db)
    rooms = RoomDirectory(db)
    presence = PresenceRegistry()
    channel = DeliveryChannel(send_timeout=app.state.settings.ws_send_timeout)
    service = MessagingService(
        store=MessageStore(db, users, rooms),
        rooms=rooms,
        users=users,
        presence=presence,
        channel=channel,
        relay=MessageRelay(channel),
    )
    app.state.db = db
    app.state.presence = presence
    app.state.messaging = service
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    client = None
    if getattr(app.state, 'db', None) is None:
        client = create_client(settings)
        wire(app, client[settings.mongodb_db])
    await ensure_indexes(app.state.db)
    logger.info('[SERVER] messaging backend ready (db=%s)', settings.mongodb_db)
    try:
        yield
    finally:
        await app.state.messaging.drain()
        if client is not None:
            client.close()


def create_app(settings: Optional[Settings] = None, db: Optional[AsyncIOMotorDatabase] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(title='Arotu chat', lifespan=lifespan)
    app.state.settings = settings
    app.state.db = None
    if db is not None:
        wire(app, db)

    # Allow the frontend (vite dev server) to call REST endpoints
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )
    register_error_handlers(app)

    @app.get('/')
    async def index():
        return {'message': 'Arotu chat backend running. Connect via WebSocket at /ws?token=YOURTOKEN'}

    @app.get('/health')
    async def health():
        ok = await ping(app.state.db)
        return JSONResponse({'status': 'ok' if ok else 'degraded'}, status_code=200 if ok else 503)

    app.include_router(messages_router)
    app.include_router(rooms_router)
    app.include_router(presence_router)
    app.include_router(sockets_router)
    return app


app = create_app()
