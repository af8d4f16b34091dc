"""Main FastAPI application for the 3CX WLED bridge."""

import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from . import __version__
from .background import BackgroundMonitor
from .config import settings
from .cookie_store import CookieStore
from .grouping import group_roster
from .models import Status
from .scraper import PresenceScraper
from .screenshots import ScreenshotPolicy
from .state import ReconciliationCore
from .wled_client import WLEDClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30


class StatusUpdate(BaseModel):
    status: Optional[Status] = None
    monitoring: Optional[bool] = None


class AgentStatusUpdate(BaseModel):
    status: Status


wled = WLEDClient(
    ip_address=settings.wled_ip_address,
    brightness=settings.wled_brightness,
    transition_ms=settings.wled_transition,
    timeout=settings.wled_timeout,
)
core = ReconciliationCore(wled, status_colors=settings.status_colors)
scraper = PresenceScraper(
    url=settings.threecx_web_url,
    headless=settings.threecx_headless,
    cookie_store=CookieStore(settings.cookies_path),
    screenshots=ScreenshotPolicy(
        enabled=settings.enable_screenshots,
        min_interval=settings.screenshot_min_interval / 1000,
        max_per_session=settings.screenshot_max_per_session,
        output_dir=settings.screenshots_dir,
    ),
)
monitor = BackgroundMonitor(core, scraper, interval=settings.refresh_interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Args:
        app: FastAPI application instance.
    """
    # Startup
    logger.info("Starting 3CX WLED bridge...")
    logger.info(f"3CX web client: {settings.threecx_web_url}")
    logger.info(f"WLED device: {settings.wled_ip_address}")
    await monitor.start()

    yield

    # Shutdown
    logger.info("Shutting down 3CX WLED bridge...")
    await monitor.stop()


# Create FastAPI app
app = FastAPI(
    title="3CX WLED Bridge",
    description="Mirror 3CX presence on a WLED LED strip",
    version=__version__,
    lifespan=lifespan,
)

# Mount static files
static_dir = Path(__file__).parent.parent / "static"
if static_dir.is_dir():
    app.mount("/static", StaticFiles(directory=str(static_dir)), name="static")


@app.get("/", response_class=HTMLResponse)
async def get_dashboard():
    """
    Serve the dashboard HTML page when one is installed.

    Returns:
        HTMLResponse: Dashboard HTML content.
    """
    html_file = static_dir / "index.html"
    if not html_file.is_file():
        raise HTTPException(status_code=404, detail="Dashboard not installed")
    with open(html_file, "r") as f:
        return HTMLResponse(content=f.read())


@app.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Health status.
    """
    return {
        "status": "healthy",
        "threecxUrl": settings.threecx_web_url,
        "authenticated": core.state.authenticated,
        "version": __version__,
    }


@app.get("/api/status")
async def get_status():
    """
    Get the current status, stats, roster and device state.

    Returns:
        dict: Dashboard view of the application state.
    """
    device = await wled.get_status()
    view = core.snapshot_view()
    view["wledStatus"] = device.model_dump(mode="json", exclude={"raw"}) if device else None
    view["wledConnected"] = device is not None
    view["version"] = __version__
    logger.info(f"Sending status API response with {len(view['teamStatus'])} team members")
    return view


@app.post("/api/status")
async def update_status(update: StatusUpdate):
    """
    Submit a manual status and/or toggle monitoring.

    Args:
        update: New status and monitoring flag; both optional.
    """
    if update.status is not None:
        await core.set_manual_status(update.status)
    if update.monitoring is not None:
        await core.set_monitoring(update.monitoring)
    return {"success": True}


@app.get("/api/debug")
async def get_debug():
    view = core.debug_view()
    view["connection"] = monitor.get_connection_status()
    return view


@app.get("/api/callStats")
async def get_call_stats():
    return {"callStats": core.state.latest_call_stats.to_wire()}


@app.post("/api/call-stats")
async def update_call_stats(fields: Dict[str, Any] = Body(...)):
    """
    Overlay manually entered call statistics.

    Args:
        fields: camelCase CallStats fields to overwrite.
    """
    try:
        stats = await core.update_call_stats(fields)
    except ValueError as e:
        logger.error(f"Rejected call stats update: {e}")
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid call stats data"})
    return {"success": True, "callStats": stats.to_wire()}


@app.get("/api/teamStatus")
async def get_team_status():
    roster = core.state.roster
    logger.info(f"Sending team status API response with {len(roster)} members")
    return {
        "teamStatus": [agent.to_wire() for agent in roster],
        "lastUpdated": core.state.roster_updated_at.isoformat() if core.state.roster_updated_at else None,
    }


@app.get("/api/teamStatus/grouped")
async def get_grouped_team_status(include_offline: bool = Query(True, alias="includeOffline")):
    """
    Get the roster split into the dashboard's team columns.

    Args:
        include_offline: Whether offline agents are listed.
    """
    return group_roster(core.state.roster, include_offline=include_offline)


@app.post("/api/teamStatus/{agent_id}")
async def update_team_member(agent_id: str, update: AgentStatusUpdate):
    """
    Manually set one team member's status.

    Args:
        agent_id: Agent id (extension).
        update: New status.
    """
    agent = await core.set_agent_status(agent_id, update.status)
    if agent is None:
        return JSONResponse(status_code=404, content={"success": False, "error": "Team member not found"})
    return {"success": True, "teamMember": agent.to_wire()}


@app.get("/api/wled/status")
async def get_wled_status():
    device = await wled.get_status()
    if device is None:
        return {"success": False, "status": None, "connected": False, "error": wled.last_error}
    return {"success": True, "status": device.model_dump(mode="json", exclude={"raw"}), "connected": True}


@app.post("/api/wled/test")
async def test_wled():
    """Flash the LED white, then restore the current status colour."""
    success = await core.test_device()
    return {"success": success}


@app.post("/api/reset-auth")
async def reset_auth():
    """
    Drop the stored 3CX session and start a new manual login.

    Returns:
        dict: Success message or error.
    """
    logger.info("API request received: Reset 3CX authentication")
    try:
        success = await monitor.reset_authentication()
    except Exception as e:
        logger.error(f"Error resetting 3CX authentication: {e}")
        return {"success": False, "error": str(e)}

    if not success:
        logger.error("Authentication reset failed")
        return {"success": False, "error": "Authentication reset failed"}

    logger.info("Authentication reset successful")
    return {
        "success": True,
        "message": "Authentication reset successful. Please check the browser window for login.",
    }


@app.get("/api/take-screenshot")
async def take_screenshot():
    logger.info("Taking screenshot of 3CX web interface...")
    path = await monitor.take_screenshot()
    if path is None:
        return {"success": False, "error": "Failed to take screenshot"}
    return {"success": True, "screenshotPath": str(path)}


@app.post("/api/override/clear")
async def clear_override():
    await core.clear_manual_override()
    return {"success": True, "message": "Manual override cleared"}


def _status_message() -> Dict[str, Any]:
    message = {"type": "statusUpdate"}
    message.update(core.snapshot_view())
    return message


async def _handle_client_message(websocket: WebSocket, data: Dict[str, Any]):
    """Dispatch one dashboard message by its type."""
    message_type = data.get("type")

    if message_type == "callStats" and data.get("callStats"):
        logger.info(f"Received call stats update: {data['callStats']}")
        await core.update_call_stats(data["callStats"])

    elif message_type == "status":
        logger.info(f"Received status update: {data.get('status')}")
        if data.get("status"):
            await core.set_manual_status(Status(data["status"]))
        if data.get("monitoring") is not None:
            await core.set_monitoring(bool(data["monitoring"]))

    elif message_type == "wled":
        logger.info(f"Received WLED settings update: {data.get('settings')}")
        if data.get("settings"):
            await core.apply_device_settings(data["settings"])

    elif message_type == "requestDebug":
        await websocket.send_text(json.dumps({"type": "debug", **core.debug_view()}))

    elif message_type == "requestStatus":
        await websocket.send_text(json.dumps(_status_message()))

    elif message_type == "requestCallStats":
        await websocket.send_text(
            json.dumps({"type": "callStats", "callStats": core.state.latest_call_stats.to_wire()})
        )

    elif message_type == "clearManualOverride":
        await core.clear_manual_override()
        await websocket.send_text(
            json.dumps({"type": "status", "success": True, "message": "Manual override cleared"})
        )

    else:
        logger.debug(f"Ignoring unknown message type: {message_type}")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    WebSocket endpoint for real-time updates.

    The server pings every HEARTBEAT_INTERVAL seconds; a client that has not
    answered the previous ping with a pong is disconnected.

    Args:
        websocket: WebSocket connection.
    """
    await websocket.accept()
    logger.info("WebSocket client connected")

    alive = True

    async def heartbeat():
        nonlocal alive
        while True:
            await asyncio.sleep(HEARTBEAT_INTERVAL)
            if not alive:
                logger.warning("WebSocket client missed heartbeat, terminating")
                await websocket.close(code=1001)
                return
            alive = False
            await websocket.send_text(json.dumps({"type": "ping"}))

    core.subscribe(websocket)
    heartbeat_task = asyncio.create_task(heartbeat())

    try:
        # Send initial state
        await websocket.send_text(json.dumps(_status_message()))
        await websocket.send_text(json.dumps({"type": "debug", **core.debug_view()}))
        await websocket.send_text(
            json.dumps({"type": "callStats", "callStats": core.state.latest_call_stats.to_wire()})
        )

        while True:
            raw = await websocket.receive_text()

            # Plain-text keep-alive
            if raw == "ping":
                await websocket.send_text("pong")
                continue

            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.error(f"Invalid message from client: {raw[:100]}")
                continue
            if not isinstance(data, dict):
                continue

            logger.debug(f"Received message: {data.get('type')}")
            if data.get("type") == "pong":
                alive = True
                continue

            try:
                await _handle_client_message(websocket, data)
            except ValueError as e:
                logger.error(f"Error processing message: {e}")
                await websocket.send_text(json.dumps({"type": "error", "error": str(e)}))

    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        heartbeat_task.cancel()
        core.unsubscribe(websocket)


def run():
    """Run the bridge with uvicorn; on a fatal error turn the LED off and exit."""
    import uvicorn

    try:
        uvicorn.run(
            app,
            host=settings.host,
            port=settings.server_port,
            log_level=settings.log_level.lower(),
        )
    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        try:
            asyncio.run(wled.turn_off())
        except Exception as off_error:
            logger.error(f"Error turning off WLED: {off_error}")
        sys.exit(1)


if __name__ == "__main__":
    run()
