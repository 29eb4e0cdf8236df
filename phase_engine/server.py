import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from phase_engine.config import settings
from phase_engine.db.database import close_db, init_db
from phase_engine.middleware.auth import ADMIN_HEADER, AdminSecretMiddleware
from phase_engine.routes.admin import router as admin_router
from phase_engine.routes.phases import router as phases_router
from phase_engine.routes.ranking import router as ranking_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info("Phase engine ready (env=%s)", settings.env)
    yield
    await close_db()


app = FastAPI(title="Phase Engine", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", ADMIN_HEADER],
)
app.add_middleware(AdminSecretMiddleware)

app.include_router(phases_router)
app.include_router(ranking_router)
app.include_router(admin_router)


@app.get("/health")
async def health_check():
    return {"status": "ok"}
