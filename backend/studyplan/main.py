import logging
from typing import Dict

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .config import Settings, get_settings
from .logging_config import configure_logging
from .performance_routes import router as performance_router
from .planner_routes import router as planner_router


settings_snapshot = get_settings()
configure_logging(settings_snapshot.log_level)
logger = logging.getLogger(__name__)
app = FastAPI(title="Study Plan Engine", version=__version__)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

logger.info("Study plan engine starting (schedule cache enabled: %s)", settings_snapshot.schedule_cache_enabled)
logger.info("Schedule cache TTL: %ss", settings_snapshot.schedule_cache_ttl_seconds)


@app.get("/healthz")
def health(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    return {"status": "ok", "cache": "enabled" if settings.schedule_cache_enabled else "disabled"}


app.include_router(planner_router)
app.include_router(performance_router)
