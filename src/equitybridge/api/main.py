import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse

from equitybridge.api.assets import router as assets_router
from equitybridge.api.events import router as events_router
from equitybridge.api.records import router as records_router
from equitybridge.api.state import router as state_router
from equitybridge.container import Container, close_clients

logger = logging.getLogger("equitybridge.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = Container()
    app.state.container = container
    yield
    await close_clients(container)


app = FastAPI(title="EquityBridge", version="0.1.0", lifespan=lifespan)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled error on %s %s:\n%s", request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(events_router)
app.include_router(records_router)
app.include_router(state_router)
app.include_router(assets_router)


@app.get("/", response_class=PlainTextResponse)
async def root() -> str:
    return "OK"


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}
