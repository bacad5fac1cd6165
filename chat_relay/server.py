# server.py
"""
Chat relay server. One port, two protocols:
  HTTP      — serves the chat client page (and the server's own source)
  WebSocket — any upgrade request joins the relay; text frames from one
              client are rebroadcast to every other connected client
"""
import logging
import os
import stat
from contextlib import asynccontextmanager
from typing import Dict, NamedTuple, Optional

import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import FileResponse, HTMLResponse

from chat_relay.relay import Closed, Connected, Connection, MessageReceived, RelayEngine

# ---------- Configuration ----------
PORT = int(os.environ.get("PORT", "8000"))
HOST = os.environ.get("HOST", "0.0.0.0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
STATIC_DIR = os.environ.get(
    "STATIC_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "static")
)

NOT_FOUND_BODY = "Couldn't find your URL..."
SERVER_ERROR_BODY = "Failed to load something...try again later?"

log = logging.getLogger("server")


class StaticFile(NamedTuple):
    file: str
    type: str


def static_paths(static_dir: str) -> Dict[str, StaticFile]:
    """Known paths; anything else gets the client page as HTML."""
    return {
        "/server": StaticFile(os.path.abspath(__file__), "text/plain"),
        "/client": StaticFile(os.path.join(static_dir, "client.html"), "text/plain"),
    }


def stat_file(path: str) -> os.stat_result:
    return os.stat(path)


# ---------- Transport ----------
async def connection_events(ws: WebSocket, conn: Connection):
    """Turn one accepted WebSocket into Connected, MessageReceived..., Closed."""
    yield Connected(conn)
    while True:
        message = await ws.receive()
        if message["type"] == "websocket.disconnect":
            break
        if message.get("text") is not None:
            yield MessageReceived(conn, message["text"])
        elif message.get("bytes") is not None:
            yield MessageReceived(conn, message["bytes"])
    yield Closed(conn)


def create_app(static_dir: Optional[str] = None, engine: Optional[RelayEngine] = None) -> FastAPI:
    static_dir = static_dir or STATIC_DIR
    paths = static_paths(static_dir)
    default = StaticFile(os.path.join(static_dir, "client.html"), "text/html")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.engine = engine if engine is not None else RelayEngine()
        try:
            yield
        finally:
            await app.state.engine.aclose()

    app = FastAPI(lifespan=lifespan)

    @app.websocket("/{path:path}")
    async def relay_socket(ws: WebSocket, path: str):
        # accepted unconditionally, whatever the path or origin
        # starlette has no hook to echo the Origin header back, so it is not echoed
        await ws.accept()
        peer = f"{ws.client.host}:{ws.client.port}" if ws.client else None
        conn = Connection(ws.send_text, peer=peer)
        await ws.app.state.engine.consume(connection_events(ws, conn))

    @app.api_route("/{path:path}", methods=["GET", "HEAD"])
    async def serve_static(request: Request, path: str):
        url_path = request.url.path
        log.info("Got request! %s %s", request.method, url_path)
        file, media_type = paths.get(url_path, default)
        try:
            st = stat_file(file)
        except (FileNotFoundError, NotADirectoryError):
            st = None
        except OSError:
            log.exception("Error reading static file %s", file)
            return HTMLResponse(SERVER_ERROR_BODY, status_code=500)
        if st is None or not stat.S_ISREG(st.st_mode):
            log.info("unknown request %s", url_path)
            return HTMLResponse(NOT_FOUND_BODY, status_code=404)
        return FileResponse(file, media_type=media_type, stat_result=st)

    return app


app = create_app()


def main():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(message)s")
    log.info("Listening on port %d", PORT)
    uvicorn.run("chat_relay.server:app", host=HOST, port=PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    main()
