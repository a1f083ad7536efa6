import os

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reservations.db import init_db
from reservations.errors import ReservationError
from reservations.log import clear_context, configure_logging
from routers import availability, bookings, equipment, loans, logs, resources

logger = structlog.get_logger(__name__)

app = FastAPI(title="ERC Reservations API", version="0.1.0")

app.include_router(resources.router, prefix="/resources", tags=["resources"])
app.include_router(equipment.router, prefix="/equipment", tags=["equipment"])
app.include_router(loans.router, prefix="/loans", tags=["loans"])
app.include_router(bookings.router, prefix="/bookings", tags=["bookings"])
app.include_router(availability.router, prefix="/availability", tags=["availability"])
app.include_router(logs.router, prefix="/logs", tags=["logs"])


@app.on_event("startup")
def on_startup():
    configure_logging()
    if os.getenv("SKIP_DB_INIT") == "1":
        return
    init_db()


@app.middleware("http")
async def reset_log_context(request: Request, call_next):
    clear_context()
    return await call_next(request)


@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    logger.info("Request refused", path=request.url.path, error=exc.code, detail=exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})


@app.get("/")
def root():
    return {"ok": True, "service": "erc-reservations"}
