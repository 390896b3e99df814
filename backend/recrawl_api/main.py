"""
FastAPI application for the catalog recrawler.

Run with:
    cd backend
    uvicorn recrawl_api.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .routes import alerts, recrawlers, runs, stores
from .services.database import db_pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database connection on startup and close it on shutdown."""
    try:
        db_pool.initialize()
        print("Database connection initialized")
    except Exception as e:
        print(f"Warning: Could not initialize database: {e}")
        print("Some endpoints may not work without database connection")

    yield

    db_pool.close()
    print("Database connection closed")


app = FastAPI(
    title="Catalog Recrawler API",
    description="Stored catalogs, recrawl runs and alerts",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(stores.router)
app.include_router(runs.router)
app.include_router(alerts.router)
app.include_router(recrawlers.router)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    database: str


@app.get("/api/health", response_model=HealthResponse, tags=["health"])
def health_check():
    """Health status including database connectivity."""
    try:
        with db_pool.get_cursor() as cursor:
            cursor.execute("SELECT 1")
        db_status = "connected"
    except Exception as e:
        db_status = f"error: {e}"

    return HealthResponse(status="ok", timestamp=datetime.utcnow(), database=db_status)


@app.get("/", tags=["root"])
def root():
    return {
        "message": "Catalog Recrawler API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }
