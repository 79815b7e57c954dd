from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from storebot.config import settings
from storebot.database import init_db
from storebot.logging_config import get_logger, setup_logging
from storebot.routers import admin, webhook
from storebot.services.debounce_service import MessageDebouncer
from storebot.services.turn_service import process_buffered_turn

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Storebot API",
    description="WhatsApp customer-service agent for a store",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(webhook.router)
app.include_router(admin.router)


@app.on_event("startup")
async def startup() -> None:
    if settings.auto_create_tables:
        init_db()
    app.state.debouncer = MessageDebouncer(process_buffered_turn, delay_ms=settings.message_debounce_ms)
    logger.info(f"Debouncer started (window {settings.message_debounce_ms} ms)")


@app.on_event("shutdown")
async def shutdown() -> None:
    debouncer = getattr(app.state, "debouncer", None)
    if debouncer is None:
        return
    await debouncer.shutdown(flush_pending=True)
    app.state.debouncer = None


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/debounce/status", dependencies=[Depends(admin.require_admin_token)])
async def debounce_status(request: Request):
    debouncer = getattr(request.app.state, "debouncer", None)
    if debouncer is None:
        return {"running": False, "pending_buffers": 0, "in_flight": 0}
    return {
        "running": True,
        "window_ms": debouncer.delay_ms,
        "pending_buffers": len(debouncer.pending_keys()),
        "in_flight": len(debouncer.in_flight_keys()),
    }
