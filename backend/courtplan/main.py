import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from courtplan.database import init_db
from courtplan.routes import courts, divisions, encounters, scheduling, standings

APP_NAME = "courtplan API"
APP_VERSION = "0.1.0"

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=APP_NAME, version=APP_VERSION)

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    _cors_origins.extend(o.strip() for o in _extra.split(",") if o.strip())

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(courts.router, prefix="/api", tags=["courts"])
app.include_router(divisions.router, prefix="/api", tags=["divisions"])
app.include_router(encounters.router, prefix="/api", tags=["encounters"])
app.include_router(scheduling.router, prefix="/api", tags=["schedule"])
app.include_router(standings.router, prefix="/api", tags=["standings"])


@app.on_event("startup")
def on_startup():
    init_db()

    route_count = 0
    for r in app.routes:
        methods = getattr(r, "methods", None)
        path = getattr(r, "path", None)
        if path:
            logger.debug("%-20s %s", ", ".join(sorted(methods)) if methods else "N/A", path)
            route_count += 1
    logger.info("%s %s started with %d routes", APP_NAME, APP_VERSION, route_count)


@app.get("/api/health")
def health_check():
    return {"app_name": APP_NAME, "version": APP_VERSION, "status": "healthy"}
