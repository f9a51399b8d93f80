"""
FastAPI server for the real-time voice gateway.

The telephony provider connects each answered call's media stream to
``/media-stream``; the gateway bridges it to a Gemini Live session, runs the
agent's tools and recovers dropped calls with a supervised callback.
"""

from contextlib import asynccontextmanager
from pathlib import Path

import dotenv
from fastapi import FastAPI, WebSocket

from voice_gateway.config.logging_config import configure_logging
from voice_gateway.config.settings import Settings
from voice_gateway.websocket_manager import WebSocketManager

# Load environment variables from .env file if it exists
env_path = Path(".") / ".env"
if env_path.exists():
    dotenv.load_dotenv(env_path)

logger = configure_logging()

settings = Settings.from_env()
websocket_manager = WebSocketManager(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down; closing active calls")
    await websocket_manager.shutdown()


app = FastAPI(
    title="Real-Time Voice Gateway",
    description="Bridges telephony media streams to a Gemini Live voice agent",
    version="1.0.0",
    lifespan=lifespan,
)


@app.websocket("/media-stream")
async def media_stream(websocket: WebSocket):
    """Media stream endpoint for one call; caller details may arrive as query parameters."""
    await websocket_manager.handle_websocket(websocket)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring system status.

    Returns:
        dict: Service status, whether the engine key is configured, live calls and pending callbacks.
    """
    return {
        "status": "healthy",
        "gemini_api_key_configured": bool(settings.gemini_api_key),
        "active_sessions": len(websocket_manager.registry),
        "pending_callbacks": len(await websocket_manager.scheduler.pending()),
    }


@app.get("/")
async def root():
    return {
        "name": "Real-Time Voice Gateway",
        "description": "Bridges telephony media streams to a Gemini Live voice agent",
        "version": "1.0.0",
        "endpoints": {
            "/media-stream": "WebSocket endpoint for the telephony media stream",
            "/health": "Health check endpoint",
        },
    }


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on http://{settings.host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        websocket_ping_interval=5,
        websocket_max_size=16777216,  # 16MB
        websocket_ping_timeout=20,
        http="h11",
    )
