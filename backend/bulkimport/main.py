import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import LOG_LEVEL
from .db import create_tables
from .routers import imports

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_tables()
    yield

app = FastAPI(title="Bulk Import Service", lifespan=lifespan)

app.include_router(imports.router)

@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
