"""FastAPI application exposing the aggregated now-playing state."""

import asyncio
import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from .config import Settings, get_settings, set_settings
from .services.commands import PlaybackAction, PlaybackCommand
from .services.poller import AggregationScheduler

# Configure logging
settings = get_settings()
logging.basicConfig(
    level=logging.DEBUG if settings.server.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

scheduler = AggregationScheduler()
playback_state = scheduler.state


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info("Starting now playing service...")
    logger.info(f"Server: http://{settings.server.host}:{settings.server.port}")
    await scheduler.start()
    yield
    # Shutdown
    logger.info("Shutting down...")
    await scheduler.stop()


app = FastAPI(
    title="Now Playing",
    description="Aggregated now-playing state from desktop music players",
    version="0.1.0",
    lifespan=lifespan,
)


class CommandRequest(BaseModel):
    action: PlaybackAction
    position: float | None = None
    target: str | None = None


@app.get("/api/state")
async def get_state():
    """Get current playback state."""
    return playback_state.to_dict()


@app.get("/api/sources")
async def get_sources():
    """Get the configured sources and the active retrieval mode."""
    config = get_settings().sources.to_configuration()
    return {
        "mode": config.mode.value,
        "sources": [
            {
                "name": source.name,
                "priority": config.priority.index(source.name)
                if source.name in config.priority
                else None,
                "enabled": config.is_enabled(source.name),
            }
            for source in scheduler.sources
        ],
    }


@app.get("/api/artwork")
async def get_artwork():
    """Current artwork bytes as delivered by the source."""
    artwork = playback_state.snapshot.artwork
    if artwork is None:
        raise HTTPException(status_code=404, detail="No artwork")
    return Response(content=artwork.data, media_type=artwork.mime_type)


@app.post("/api/command")
async def post_command(body: CommandRequest):
    """Forward a playback command to the active source."""
    try:
        command = PlaybackCommand(action=body.action, position=body.position, target=body.target)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    sent = await scheduler.send_command(command)
    return {"sent": sent}


@app.post("/api/config/reload")
async def reload_config():
    """Re-read config.toml and re-poll with the new source settings."""
    set_settings(Settings.load())
    scheduler.notify_config_changed()
    return {"mode": get_settings().sources.to_configuration().mode.value}


@app.get("/api/stream")
async def stream(request: Request):
    """SSE endpoint for real-time playback updates."""

    async def event_generator():
        queue: asyncio.Queue = asyncio.Queue()

        async def on_update(snapshot):
            await queue.put(snapshot)

        # Subscribe to state changes
        playback_state.subscribe(on_update)

        try:
            # Send initial state
            yield {
                "event": "state",
                "data": json.dumps(playback_state.to_dict()),
            }

            while True:
                # Check for disconnect
                if await request.is_disconnected():
                    break

                try:
                    # Wait for updates with timeout
                    snapshot = await asyncio.wait_for(queue.get(), timeout=30.0)
                    yield {
                        "event": "update",
                        "data": json.dumps({"now_playing": snapshot.to_dict()}),
                    }
                except asyncio.TimeoutError:
                    # Send keepalive
                    yield {"event": "ping", "data": ""}
        finally:
            playback_state.unsubscribe(on_update)

    return EventSourceResponse(event_generator())


def run():
    """Run the application with uvicorn."""
    import argparse

    import uvicorn

    parser = argparse.ArgumentParser(description="Now Playing")
    parser.add_argument(
        "--mode",
        choices=["priority", "universal"],
        help="Read from specific players in priority order, or from the system media helper",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port to run on (overrides config.toml)",
    )
    args = parser.parse_args()

    # Load settings and apply CLI overrides
    settings = Settings.load()
    if args.mode:
        settings.sources.mode = args.mode
    if args.port:
        settings.server.port = args.port

    # Store settings so they're available to the app
    set_settings(settings)

    uvicorn.run(
        "now_playing.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.debug,
    )


if __name__ == "__main__":
    run()
