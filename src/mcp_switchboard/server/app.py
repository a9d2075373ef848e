"""
HTTP/SSE surface of the bundled MCP server (aiohttp.web).

Routes:
    GET  /health                 liveness probe
    GET  /sse                    opens a session; first event is {"type":"session","sessionId":...}
    POST /message                X-Session-Id header; response arrives on the session's stream
    POST /mcp                    synchronous JSON-RPC
    GET  /sessions               active session ids
    GET  /notifications/latest   latest reminder summary
"""
import asyncio
import json

import structlog
from aiohttp import web

from ..config import ServerConfig
from ..exceptions import MCPNotFoundError
from ..protocol import methods
from ..transport.remote import SESSION_HEADER
from ..transport.sse import format_sse_event
from .handler import McpServerHandler
from .reminders import ReminderStore
from .sessions import SseSessionRegistry

logger = structlog.get_logger(__name__)

HANDLER_KEY = web.AppKey("handler", McpServerHandler)
REGISTRY_KEY = web.AppKey("registry", SseSessionRegistry)
REMINDERS_KEY = web.AppKey("reminders", ReminderStore)

KEEPALIVE_INTERVAL_SECONDS = 30.0

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": f"Content-Type, Accept, {SESSION_HEADER}",
}


@web.middleware
async def cors_middleware(request: web.Request, handler) -> web.StreamResponse:
    if request.method == "OPTIONS":
        return web.Response(status=204, headers=CORS_HEADERS)
    try:
        response = await handler(request)
    except web.HTTPException as e:
        e.headers.update(CORS_HEADERS)
        raise
    # SSE responses are already prepared with their headers.
    if not response.prepared:
        response.headers.update(CORS_HEADERS)
    return response


def notification_message(summary: str) -> dict:
    return {
        "jsonrpc": "2.0",
        "type": "notification",
        "method": methods.NOTIFICATION_MESSAGE,
        "params": {"level": "info", "message": summary},
    }


async def health(request: web.Request) -> web.Response:
    return web.Response(text="OK", content_type="text/plain")


async def sse_stream(request: web.Request) -> web.StreamResponse:
    registry = request.app[REGISTRY_KEY]
    session = await registry.open_session()
    log = logger.bind(session_id=session.id, peer=request.remote)

    response = web.StreamResponse(
        status=200,
        headers={
            "Content-Type": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            **CORS_HEADERS,
        },
    )
    try:
        await response.prepare(request)
        await response.write(format_sse_event(json.dumps({"type": "session", "sessionId": session.id})).encode("utf-8"))
        log.info("SSE client connected.")
        while True:
            message = await session.next_event(KEEPALIVE_INTERVAL_SECONDS)
            if message is None:
                break
            if message == "":
                await response.write(b": keepalive\n\n")
                continue
            await response.write(format_sse_event(message).encode("utf-8"))
    except ConnectionResetError:
        log.info("SSE client disconnected.")
    finally:
        await registry.close_session(session.id)
    return response


async def post_message(request: web.Request) -> web.Response:
    session_id = request.headers.get(SESSION_HEADER)
    if not session_id:
        return web.json_response({"error": f"Missing {SESSION_HEADER} header"}, status=400)
    body = await request.read()
    try:
        await request.app[REGISTRY_KEY].submit(session_id, body)
    except MCPNotFoundError:
        logger.warning("Message for unknown session.", session_id=session_id)
        return web.json_response({"error": "Session not found"}, status=404)
    return web.json_response({"status": "sent"})


async def post_mcp(request: web.Request) -> web.Response:
    body = await request.read()
    response = await request.app[HANDLER_KEY].handle(body)
    if response is None:
        return web.Response(status=202)
    return web.Response(text=response, content_type="application/json")


async def list_sessions(request: web.Request) -> web.Response:
    session_ids = await request.app[REGISTRY_KEY].session_ids()
    return web.json_response({"sessions": session_ids, "count": len(session_ids)})


async def latest_notification(request: web.Request) -> web.Response:
    reminders = request.app[REMINDERS_KEY]
    if reminders.latest_notification is None or reminders.latest_notification_at is None:
        return web.Response(status=204)
    return web.json_response({
        "notification": reminders.latest_notification,
        "timestamp": int(reminders.latest_notification_at.timestamp() * 1000),
    })


def create_app(handler: McpServerHandler, server_config: ServerConfig | None = None) -> web.Application:
    """Builds the aiohttp application. The reminder timer runs for the lifetime of the app."""
    server_config = server_config or ServerConfig()
    app = web.Application(middlewares=[cors_middleware])
    registry = SseSessionRegistry(handler, queue_size=server_config.session_queue_size)
    app[HANDLER_KEY] = handler
    app[REGISTRY_KEY] = registry
    app[REMINDERS_KEY] = handler.reminders

    async def broadcast_summary(summary: str) -> None:
        delivered = await registry.broadcast(notification_message(summary))
        logger.info("Reminder summary broadcast.", sessions=delivered)

    async def on_startup(app: web.Application) -> None:
        app[REMINDERS_KEY].add_listener(broadcast_summary)
        await app[REMINDERS_KEY].start()

    async def on_shutdown(app: web.Application) -> None:
        # Ends open SSE loops so the runner does not wait on them.
        await registry.shutdown()

    async def on_cleanup(app: web.Application) -> None:
        app[REMINDERS_KEY].remove_listener(broadcast_summary)
        await app[REMINDERS_KEY].stop()
        await handler.close()

    app.on_startup.append(on_startup)
    app.on_shutdown.append(on_shutdown)
    app.on_cleanup.append(on_cleanup)

    app.router.add_get("/health", health)
    app.router.add_get("/sse", sse_stream)
    app.router.add_post("/message", post_message)
    app.router.add_post("/mcp", post_mcp)
    app.router.add_get("/sessions", list_sessions)
    app.router.add_get("/notifications/latest", latest_notification)
    return app


async def serve_sse(handler: McpServerHandler, server_config: ServerConfig) -> None:
    """Runs the HTTP/SSE server until cancelled."""
    app = create_app(handler, server_config)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, server_config.host, server_config.port)
    await site.start()
    logger.info(
        "MCP server listening.",
        transport="sse",
        host=server_config.host,
        port=server_config.port,
        sse_endpoint=f"http://{server_config.host}:{server_config.port}/sse",
    )
    try:
        await asyncio.Event().wait()
    finally:
        await runner.cleanup()
        logger.info("MCP server stopped.", transport="sse")
