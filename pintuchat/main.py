import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pintuchat.config import get_settings
from pintuchat.database.connection import close_mongo_connection, connect_to_mongo, get_database
from pintuchat.errors import DomainException
from pintuchat.repositories.message_repository import MessageRepository
from pintuchat.routers.chat import manager
from pintuchat.routers.chat import router as chat_router
from pintuchat.routers.chat import ws_router as chat_ws_router
from pintuchat.utils.realtime_bus import close_bus


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await connect_to_mongo()
    try:
        await MessageRepository(get_database()).ensure_indexes()
        yield
    finally:
        await manager.close_all()
        await close_bus()
        await close_mongo_connection()


app = FastAPI(title="PintuKerja Messaging", lifespan=lifespan)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail}, headers=http_exc.headers)


app.include_router(chat_router)
app.include_router(chat_ws_router)


@app.get("/")
async def root():

    db = get_database()
    collections = await db.list_collection_names()
    return {"message": "Connected to MongoDB!", "collections": collections, "push_users_online": len(manager.active_connections)}
