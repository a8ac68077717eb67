import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from pos_terminal.core.config import settings
from pos_terminal.core.errors import PosError
from pos_terminal.middleware.idempotency import install_idempotency
from pos_terminal.middleware.sale_audit import install_sale_audit
from pos_terminal.routers import health, pos, session

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name, version=settings.app_version)


@app.exception_handler(PosError)
async def pos_error_handler(request: Request, exc: PosError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.as_detail()})


# audit sits inside idempotency, so replays never reach it
install_sale_audit(app)
install_idempotency(app)

app.include_router(health.router)
app.include_router(session.router)
app.include_router(pos.router)
