import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from chatsync.broker.connection import BrokerConnection
from chatsync.broker.publisher import ReadStatusPublisher
from chatsync.config import settings
from chatsync.database import create_tables
from chatsync.exceptions import DomainException
from chatsync.logging_config import setup_logging
from chatsync.websocket_manager import manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    await create_tables()

    broker = BrokerConnection.from_settings()
    await broker.connect()
    app.state.broker = broker
    app.state.read_status_publisher = ReadStatusPublisher(broker)

    await manager.start_relay()
    logger.info("%s %s started", settings.APP_NAME, settings.VERSION)
    try:
        yield
    finally:
        await manager.stop_relay()
        await broker.close()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Chat backend: message lifecycle and read-receipt sync",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException):
    http_exc = exc.to_http_exception()
    return JSONResponse(status_code=http_exc.status_code, content={"detail": http_exc.detail})

from chatsync.api.v1 import messages, websocket

app.include_router(messages.router, prefix="/api/v1/messages", tags=["messages"])
app.include_router(websocket.router, prefix="/api/v1/ws", tags=["websocket"])

@app.get("/")
async def root():
    return {"message": settings.APP_NAME, "version": settings.VERSION}

@app.get("/health")
async def health():
    broker = getattr(app.state, "broker", None)
    return {
        "status": "ok",
        "broker": "ready" if broker is not None and broker.is_ready() else "unavailable",
    }
