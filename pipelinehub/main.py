import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.database import close_pool, get_pool
from .routers import allocation, change_requests, forecast, months, overhead, pipeline, roles, storage

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_pool()  # Warm pool on startup
    yield
    await close_pool()


app = FastAPI(
    title="Pipeline Forecast Backend",
    version="1.0.0",
    lifespan=lifespan,
)

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
# Preview deployments live on *.run.app
RUN_APP_ORIGIN_REGEX = r"https://.*run\.app"

configured_origins = settings.cors_origin_list
if "*" in configured_origins:
    allowed_origins = ["*"]
else:
    allowed_origins = list(dict.fromkeys(configured_origins + DEFAULT_CORS_ORIGINS))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_origin_regex=RUN_APP_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(pipeline.router, prefix=settings.api_prefix, tags=["pipeline"])
app.include_router(change_requests.router, prefix=settings.api_prefix, tags=["change-requests"])
app.include_router(months.router, prefix=settings.api_prefix, tags=["months"])
app.include_router(forecast.router, prefix=settings.api_prefix, tags=["forecast"])
app.include_router(overhead.router, prefix=settings.api_prefix, tags=["overhead"])
app.include_router(allocation.router, prefix=settings.api_prefix, tags=["allocation"])
app.include_router(storage.router, prefix=settings.api_prefix, tags=["storage"])
app.include_router(roles.router, prefix=settings.api_prefix, tags=["roles"])


@app.get("/health")
async def health():
    return {"status": "ok"}
