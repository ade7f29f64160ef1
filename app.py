from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from starlette.websockets import WebSocketState
from routers.rooms import rooms_router
from schemas.rooms import HealthResponse
from registry import RoomRegistry
from lifecycle import SessionLifecycleManager
from message_router import MessageRouter
from constants import CORS_ORIGINS, LOG_FILE, LOG_LEVEL, WS_PATH
from datetime import datetime, timezone
from logging_config import get_logger, setup_logging

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


async def signaling_endpoint(websocket: WebSocket):
    """Signaling websocket. One session per connection, frames handled in order.

    The first frame sent is a ``welcome`` carrying the session id; everything
    after that is driven by the client's join/relay/request messages.
    """
    lifecycle: SessionLifecycleManager = websocket.app.state.lifecycle
    message_router: MessageRouter = websocket.app.state.message_router
    client_host = websocket.client.host if websocket.client else "unknown"

    await websocket.accept()
    logger.info(f"WebSocket connection accepted from {client_host}")
    session = await lifecycle.connect(websocket)

    try:
        message_count = 0
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected normally for session {session.id}")
                break

            data = frame.get("text")
            if data is None:
                data = frame.get("bytes")
            if data is None:
                continue

            message_count += 1
            logger.debug(f"Received message #{message_count} from session {session.id}")
            await message_router.dispatch(session, data)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for session {session.id}")
    except Exception as e:
        logger.error(f"WebSocket error for session {session.id}: {e}", exc_info=True)
    finally:
        await lifecycle.disconnect(session)
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")


async def health():
    return HealthResponse(status="OK", timestamp=datetime.now(timezone.utc).isoformat())


def create_app() -> FastAPI:
    app = FastAPI(title="Signaling Relay")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Registry is per app so each app instance (and each test) has its own rooms
    registry = RoomRegistry()
    lifecycle = SessionLifecycleManager(registry)
    app.state.registry = registry
    app.state.lifecycle = lifecycle
    app.state.message_router = MessageRouter(lifecycle)

    app.include_router(rooms_router)
    app.add_api_route("/health", health, methods=["GET"], response_model=HealthResponse)

    # Older clients connect to the server root
    app.add_api_websocket_route(WS_PATH, signaling_endpoint)
    if WS_PATH != "/":
        app.add_api_websocket_route("/", signaling_endpoint)

    logger.info(f"FastAPI application initialized, signaling on {WS_PATH}")
    return app


app = create_app()
