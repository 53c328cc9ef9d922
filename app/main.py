import logging
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.logging import configure_logging
from app.db.base import Base
from app.db.session import engine
from app.routers import jobs, records

logger = logging.getLogger(__name__)


class UploadThrottle:
    """Sliding one-minute window of job submissions per client."""

    def __init__(self, limit_per_minute: int, window_seconds: float = 60.0) -> None:
        self.limit_per_minute = limit_per_minute
        self.window_seconds = window_seconds
        self._submissions: dict[str, deque[float]] = defaultdict(deque)

    def allow(self, client: str) -> bool:
        now = time.monotonic()
        recent = self._submissions[client]
        while recent and now - recent[0] > self.window_seconds:
            recent.popleft()
        if len(recent) >= self.limit_per_minute:
            return False
        recent.append(now)
        return True


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.auto_create_tables:
            Base.metadata.create_all(bind=engine)
        yield

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    throttle = UploadThrottle(settings.rate_limit_per_minute)

    @app.middleware("http")
    async def throttle_job_submissions(request: Request, call_next):
        if request.method == "POST" and request.url.path.startswith("/jobs"):
            client = request.client.host if request.client else "unknown"
            if not throttle.allow(client):
                logger.warning("job_submission_throttled", extra={"client": client})
                return JSONResponse(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    content={"detail": "Too many job submissions"},
                    headers={"Retry-After": str(int(throttle.window_seconds))},
                )
        return await call_next(request)

    app.include_router(jobs.router)
    app.include_router(records.router)

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
