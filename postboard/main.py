import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from postboard import __version__
from postboard.cache import cache
from postboard.config import settings
from postboard.database import Database
from postboard.errors import DataAccessError
from postboard.routers import comments, posts, users

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def configure_logging() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format=_LOG_FORMAT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging()
    app.state.store = Database(settings.DATABASE_URL, echo=settings.DEBUG)
    await cache.connect()
    yield
    # Shutdown
    await cache.disconnect()
    await app.state.store.dispose()

app = FastAPI(
    title="Postboard API",
    description="Users, posts and comments behind a tag-invalidated read-through cache",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(users.router)
app.include_router(posts.router)
app.include_router(comments.router)


@app.exception_handler(DataAccessError)
async def data_access_error_handler(request: Request, exc: DataAccessError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "kind": exc.kind.value},
    )


@app.get("/health")
async def health():
    return {"status": "healthy", "version": __version__, "cache": cache.stats}
