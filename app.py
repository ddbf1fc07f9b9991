from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers.users import users_router
from routers.messages import messages_router
from routers.calls import calls_router
from backend import redis_backend
from constants import CLIENT_URL, RATE_LIMIT_MAX, RATE_LIMIT_WINDOW_SECONDS
from presence import PresenceRegistry
from relay import RelayError, SignalingRelay
import json
import redis
from logging_config import get_logger, setup_logging
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)

app = FastAPI()

# Only the web client origin may call the API
app.add_middleware(
    CORSMiddleware,
    allow_origins=[CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users_router)
app.include_router(messages_router)
app.include_router(calls_router)

# Presence and relay state is per process. A restart forgets every
# connection and users show as offline until they authenticate again.
app.state.relay = SignalingRelay(PresenceRegistry())

logger.info("FastAPI application initialized")


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    """Fixed-window request cap per client IP on the REST API."""
    if request.url.path.startswith("/api/"):
        client = request.client.host if request.client else "unknown"
        try:
            count, allowed = redis_backend.hit_rate_limit(client, RATE_LIMIT_MAX, RATE_LIMIT_WINDOW_SECONDS)
        except redis.RedisError as e:
            # fail open
            logger.error(f"Rate limiter unavailable: {e}")
            allowed = True
        if not allowed:
            logger.warning(f"Rate limit exceeded for {client} ({count} requests)")
            return JSONResponse(status_code=429, content={"detail": "Too many requests, please try again later."})
    return await call_next(request)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.debug(f"Validation failed for {request.method} {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"errors": jsonable_encoder(exc.errors())})


@app.exception_handler(redis.RedisError)
async def persistence_exception_handler(request: Request, exc: redis.RedisError):
    logger.error(f"Persistence error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/api/health")
async def health():
    return {
        "status": "OK",
        "message": "Server is running",
        "redis": redis_backend.ping(),
        "online_users": len(app.state.relay.registry),
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Signaling relay endpoint.

    Frames in both directions are JSON text: {"event": <name>, "data": <payload>}.
    The first useful frame is `authenticate` with a bearer token. Events sent
    before it are still relayed, with a null sender id.
    """
    relay: SignalingRelay = websocket.app.state.relay
    await websocket.accept()

    async def send(frame: dict):
        await websocket.send_text(json.dumps(frame))

    connection = relay.connect(send)
    try:
        await relay.emit(connection, "connected", {"connectionId": connection.connection_id})

        message_count = 0
        while True:
            try:
                data = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {connection.connection_id}")
                break
            message_count += 1

            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"Non-JSON frame #{message_count} from connection {connection.connection_id}")
                await relay.emit(connection, "error", {"message": "Frames must be JSON objects"})
                continue

            event = frame.get("event") if isinstance(frame, dict) else None
            if not isinstance(event, str):
                await relay.emit(connection, "error", {"message": "Missing 'event'"})
                continue

            try:
                await relay.dispatch(connection, event, frame.get("data"))
            except RelayError as e:
                logger.debug(f"Rejected '{event}' from connection {connection.connection_id}: {e}")
                await relay.emit(connection, "error", {"event": event, "message": str(e)})
    except Exception as e:
        logger.error(f"WebSocket error for connection {connection.connection_id}: {e}", exc_info=True)
    finally:
        relay.disconnect(connection)
        try:
            await websocket.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket for connection {connection.connection_id}: {e}")
