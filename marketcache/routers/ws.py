"""WebSocket router: /ws endpoint streaming emitted domain events."""

from fastapi import FastAPI, WebSocket


def register(app: FastAPI):
    @app.websocket("/ws")
    async def ws_events(ws: WebSocket):
        srv = app.state.server
        if srv.ws_manager is None:
            await ws.close(code=1013, reason="Service unavailable")
            return
        await srv.ws_manager.handle_connection(ws)
