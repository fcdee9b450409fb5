import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    LOG_LEVEL,
)
from backend.routers import admin, attendance, auth, core, scanner, settings, students
from database.db import DB_PATH, create_tables

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# -----------------------------
# Startup
# -----------------------------
@asynccontextmanager
async def lifespan(_app: FastAPI):
    create_tables()
    logger.info("Classdesk API ready (db=%s)", DB_PATH)
    yield


app = FastAPI(title="Classdesk API", lifespan=lifespan)


# -----------------------------
# CORS (React dev server)
# -----------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


app.include_router(core.router)
app.include_router(auth.router)
app.include_router(students.router)
app.include_router(attendance.router)
app.include_router(scanner.router)
app.include_router(settings.router)
app.include_router(admin.router)
