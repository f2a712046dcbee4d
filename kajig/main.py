from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kajig.api.routes import backends, chat, scans
from kajig.config import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    yield
    # Shutdown


app = FastAPI(
    title="Kajig",
    description="Heuristic findings research with multi-backend chat failover",
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
app.include_router(backends.router)
app.include_router(chat.router)
app.include_router(scans.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "kajig"}
