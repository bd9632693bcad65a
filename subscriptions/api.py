"""
HTTP API handlers for the subscription manager
WebSocket state updates + LiveKit subscriber tokens
"""
import asyncio
import json
import logging
import os
from typing import Optional, Set

from aiohttp import web

from . import livekit_auth
from .manager import SubscriptionManager
from .state import MediaKind, SubscriptionState, parse_media_kind
from .utils import generate_agent_identity

logger = logging.getLogger("stream_subscriptions")

MANAGER_KEY = web.AppKey("manager", SubscriptionManager)
WS_SUBSCRIBERS_KEY = web.AppKey("ws_subscribers", Set[web.WebSocketResponse])
BROADCAST_TASKS_KEY = web.AppKey("broadcast_tasks", Set[asyncio.Task])


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"ok": False, "error": message}, status=status)


async def _read_json(request: web.Request) -> dict:
    """Request body as a dict; empty body is {}"""
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(
            text=json.dumps({"ok": False, "error": "invalid JSON body"}),
            content_type="application/json",
        )
    if not isinstance(data, dict):
        raise web.HTTPBadRequest(
            text=json.dumps({"ok": False, "error": "JSON body must be an object"}),
            content_type="application/json",
        )
    return data


def _media_kind(request: web.Request) -> Optional[MediaKind]:
    try:
        return parse_media_kind(request.match_info["media"])
    except ValueError:
        return None

# ============================================================
# WEBSOCKET FOR REAL-TIME UPDATES
# ============================================================

async def ws_subscription_updates(request: web.Request) -> web.WebSocketResponse:
    """WebSocket endpoint streaming subscription state changes"""
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    subscribers = request.app[WS_SUBSCRIBERS_KEY]
    manager = request.app[MANAGER_KEY]
    subscribers.add(ws)
    logger.info(f"📡 WebSocket client connected (total: {len(subscribers)})")

    try:
        await ws.send_json({
            "type": "snapshot",
            "stats": manager.get_subscription_stats(),
            "subscriptions": manager.get_all_subscription_info(),
        })
    except Exception as e:
        logger.error(f"Failed to send initial snapshot: {e}")

    try:
        async for msg in ws:
            if msg.type == web.WSMsgType.TEXT and msg.data == "ping":
                await ws.send_str("pong")
    except Exception as e:
        logger.debug(f"WebSocket error: {e}")
    finally:
        subscribers.discard(ws)
        logger.info(f"📡 WebSocket client disconnected (remaining: {len(subscribers)})")

    return ws


async def broadcast_state_change(app: web.Application, uid: str, kind: MediaKind,
                                 state: SubscriptionState) -> None:
    """Push one state change to every WebSocket subscriber"""
    subscribers = app[WS_SUBSCRIBERS_KEY]
    if not subscribers:
        return

    message = json.dumps({
        "type": "state",
        "uid": uid,
        "media_kind": kind.value,
        "state": state.value,
        "stats": app[MANAGER_KEY].get_subscription_stats(),
    })

    dead_sockets = set()
    for ws in list(subscribers):
        try:
            await ws.send_str(message)
        except Exception as e:
            logger.debug(f"Failed to send to WebSocket: {e}")
            dead_sockets.add(ws)

    subscribers.difference_update(dead_sockets)

# ============================================================
# INTROSPECTION
# ============================================================

async def api_stats(request: web.Request) -> web.Response:
    manager = request.app[MANAGER_KEY]
    return web.json_response({"ok": True, "stats": manager.get_subscription_stats()})


async def api_subscriptions(request: web.Request) -> web.Response:
    manager = request.app[MANAGER_KEY]
    return web.json_response({"ok": True, "subscriptions": manager.get_all_subscription_info()})


async def api_history(request: web.Request) -> web.Response:
    manager = request.app[MANAGER_KEY]
    uid = request.query.get("uid")
    return web.json_response({"ok": True, "history": manager.get_subscription_history(uid)})


async def api_subscription_info(request: web.Request) -> web.Response:
    manager = request.app[MANAGER_KEY]
    info = manager.get_user_subscription_info(request.match_info["uid"])
    if info is None:
        return _error("unknown participant", 404)
    return web.json_response({"ok": True, "subscription": info})

# ============================================================
# SUBSCRIPTION CONTROL
# ============================================================

async def api_subscribe(request: web.Request) -> web.Response:
    """Subscribe to a participant's audio or video"""
    manager = request.app[MANAGER_KEY]
    uid = request.match_info["uid"]
    kind = _media_kind(request)
    if kind is None:
        return _error("unsupported media kind", 400)

    data = await _read_json(request)
    try:
        max_attempts = data.get("max_retry_attempts")
        max_attempts = int(max_attempts) if max_attempts is not None else None
        retry_delay = data.get("retry_delay")
        retry_delay = float(retry_delay) if retry_delay is not None else None
    except (TypeError, ValueError):
        return _error("invalid retry options", 400)
    if max_attempts is not None and max_attempts < 1:
        return _error("max_retry_attempts must be at least 1", 400)

    ok = await manager.subscribe_to_user(uid, kind, max_retry_attempts=max_attempts,
                                         retry_delay=retry_delay)
    return web.json_response({
        "ok": ok,
        "subscription": manager.get_user_subscription_info(uid),
    })


async def api_unsubscribe(request: web.Request) -> web.Response:
    manager = request.app[MANAGER_KEY]
    uid = request.match_info["uid"]
    kind = _media_kind(request)
    if kind is None:
        return _error("unsupported media kind", 400)

    ok = await manager.unsubscribe_from_user(uid, kind)
    return web.json_response({
        "ok": ok,
        "subscription": manager.get_user_subscription_info(uid),
    })


async def api_auto_subscribe(request: web.Request) -> web.Response:
    """Toggle automatic audio subscription"""
    manager = request.app[MANAGER_KEY]
    data = await _read_json(request)
    enabled = data.get("enabled")
    if not isinstance(enabled, bool):
        return _error("'enabled' must be a boolean", 400)

    manager.set_auto_subscribe(enabled)
    return web.json_response({"ok": True, "auto_subscribe_enabled": enabled})

# ============================================================
# LIVEKIT TOKEN GENERATION
# ============================================================

async def api_lk_token(request: web.Request) -> web.Response:
    """Mint a subscribe-only LiveKit token for the agent's session client"""
    if not livekit_auth.is_livekit_configured():
        return _error("LIVEKIT_* env variables not configured", 500)

    data = await _read_json(request)
    room = data.get("room")
    if not room:
        return _error("room is required", 400)
    identity = data.get("identity") or os.environ.get("SUBSCRIBER_IDENTITY") or generate_agent_identity()

    token = livekit_auth.mint_subscriber_token(identity=identity, room=room, name=data.get("name"))
    logger.info("🔑 Minted subscriber token for %s in %s", identity, room)

    return web.json_response({
        "ok": True,
        "url": livekit_auth.LIVEKIT_URL,
        "identity": identity,
        "token": token
    })

# ============================================================
# WIRING
# ============================================================

def attach_manager(app: web.Application, manager: SubscriptionManager) -> None:
    """Store the manager on the app and stream its state changes to WebSockets"""
    app[MANAGER_KEY] = manager
    app[WS_SUBSCRIBERS_KEY] = set()
    app[BROADCAST_TASKS_KEY] = set()

    previous = manager.listeners.on_subscription_state_changed

    def on_state_changed(uid, kind, state):
        if previous is not None:
            try:
                previous(uid, kind, state)
            except Exception:
                logger.error("State listener failed for %s %s", uid, kind.value, exc_info=True)
        if app[WS_SUBSCRIBERS_KEY]:
            # Hold a reference until the push finishes
            tasks = app[BROADCAST_TASKS_KEY]
            task = asyncio.ensure_future(broadcast_state_change(app, uid, kind, state))
            tasks.add(task)
            task.add_done_callback(tasks.discard)

    manager.listeners.on_subscription_state_changed = on_state_changed


def setup_routes(app: web.Application) -> None:
    # Fixed paths first so they are not captured by /subscriptions/{uid}
    app.router.add_get("/subscriptions", api_subscriptions)
    app.router.add_get("/subscriptions/stats", api_stats)
    app.router.add_get("/subscriptions/history", api_history)
    app.router.add_post("/subscriptions/auto", api_auto_subscribe)
    app.router.add_get("/subscriptions/{uid}", api_subscription_info)
    app.router.add_post("/subscriptions/{uid}/{media}", api_subscribe)
    app.router.add_delete("/subscriptions/{uid}/{media}", api_unsubscribe)
    app.router.add_post("/lk/token", api_lk_token)
    app.router.add_get("/ws/subscriptions", ws_subscription_updates)
