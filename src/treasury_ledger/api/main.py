import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from treasury_ledger.api.balance_changes import router as balance_changes_router
from treasury_ledger.api.history import router as history_router
from treasury_ledger.api.monitored_accounts import router as monitored_accounts_router
from treasury_ledger.container import Container
from treasury_ledger.exceptions import ExternalServiceError, RateLimited

logger = logging.getLogger("treasury_ledger.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    container = Container()
    app.state.container = container
    logger.info("Serving ledger with RPC %s", container.settings().near_rpc_url)
    yield
    await container.rpc_http_client().close()
    await container.engine().dispose()


app = FastAPI(title="Treasury Ledger", version="0.1.0", lifespan=lifespan)


@app.exception_handler(ExternalServiceError)
async def upstream_exception_handler(request: Request, exc: ExternalServiceError):
    logger.warning("Upstream failure on %s %s: %s", request.method, request.url.path, exc)
    code = status.HTTP_503_SERVICE_UNAVAILABLE if isinstance(exc, RateLimited) else status.HTTP_502_BAD_GATEWAY
    return JSONResponse(status_code=code, content={"detail": str(exc), "error": type(exc).__name__})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)

app.include_router(monitored_accounts_router)
app.include_router(balance_changes_router)
app.include_router(history_router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": app.version}
