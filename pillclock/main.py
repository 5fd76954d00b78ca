import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pillclock.core.config import Settings
from pillclock.core.context import build_context
from pillclock.db.database import create_engine_for, create_sessionmaker, init_models
from pillclock.notifications.base import NotificationLayer
from pillclock.routes import medications, reminders

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, notifier: Optional[NotificationLayer] = None) -> FastAPI:
    settings = settings or Settings()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=settings.log_level.upper(),
    )

    # ---- Startup / Shutdown ----
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_engine = create_engine_for(settings.database_url, echo=settings.sql_echo)
        await init_models(db_engine)
        app.state.sessionmaker = create_sessionmaker(db_engine)
        logger.info("✅ Database initialized.")

        ctx = build_context(settings, sessionmaker=app.state.sessionmaker, notifier=notifier)
        app.state.ctx = ctx
        await ctx.start()
        logger.info("🔔 Reminder engine started (%s)", settings.notification_capability)
        try:
            yield
        finally:
            logger.info("🛑 Shutting down PillClock API...")
            await ctx.stop()
            await db_engine.dispose()

    app = FastAPI(
        title="PillClock API",
        version="1.0.0",
        description="Medication reminder scheduling service",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # ---- CORS Setup ----
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---- Health Check ----
    @app.get("/", tags=["system"])
    async def health_check():
        return {"status": "ok", "service": "PillClock API"}

    # ---- Register Routes ----
    app.include_router(medications.router, prefix="/medications", tags=["medications"])
    app.include_router(reminders.router, prefix="/reminders", tags=["reminders"])

    return app


# ---- Run Locally ----
if __name__ == "__main__":
    uvicorn.run("pillclock.main:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
