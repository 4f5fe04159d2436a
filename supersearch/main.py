from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from supersearch.api import deps
from supersearch.api.routes import super_search
from supersearch.config import settings
from supersearch.services import database


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    yield
    # Shutdown
    await deps.shutdown()
    await database.close_pool()


app = FastAPI(
    title="Super Search",
    description="Structured entity research over web research providers",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(super_search.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "supersearch"}
