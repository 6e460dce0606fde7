from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from .bridge import VisitBridge
from .client import create_http_client
from .logger import logger
from .settings import Settings, settings


def create_app(
    app_settings: Settings = settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.http = create_http_client(app_settings, transport)
        logger.info(f"Nudge engine using API at {app_settings.api_host}")
        yield
        await app.state.http.aclose()

    app = FastAPI(title="CartSaver Nudge Engine",
                  default_response_class=ORJSONResponse,
                  lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.websocket("/visits")
    async def visits(websocket: WebSocket):
        await websocket.accept()
        await VisitBridge(websocket, app.state.http, app_settings).run()

    return app


app = create_app()


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port)
