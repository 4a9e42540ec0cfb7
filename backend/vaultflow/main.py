from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import get_settings
from .core.logging import configure_logging
from .api.routes_runs import router as runs_router
from .api.routes_web_scout import router as web_scout_router
from .api.routes_artifacts import router as artifacts_router
from .api.routes_reports import router as reports_router
from .api.routes_topics import router as topics_router

configure_logging()
settings = get_settings()

app = FastAPI(title="Vaultflow API")


def _split_origins(raw: str) -> list[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


# CORS:
# - In prod, FRONTEND_ORIGIN is required and we never fall back to "*".
# - Elsewhere, "*" unless an explicit origin list is configured.
if settings.ENV.lower() == "prod":
    if not settings.FRONTEND_ORIGIN:
        raise RuntimeError(
            "FRONTEND_ORIGIN must be set in production; refusing to start with wide-open CORS."
        )
    origins = _split_origins(settings.FRONTEND_ORIGIN)
elif settings.FRONTEND_ORIGIN and not settings.CORS_ALLOW_ALL_ORIGINS:
    origins = _split_origins(settings.FRONTEND_ORIGIN)
else:
    origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=False,
)

app.include_router(runs_router, prefix=settings.API_PREFIX)
app.include_router(web_scout_router, prefix=settings.API_PREFIX)
app.include_router(artifacts_router, prefix=settings.API_PREFIX)
app.include_router(reports_router, prefix=settings.API_PREFIX)
app.include_router(topics_router, prefix=settings.API_PREFIX)
