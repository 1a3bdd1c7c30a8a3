import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.db import engine
from app.escrow.errors import EscrowError
from app.escrow.repository import create_tables
from app.escrow.router import router as escrow_router

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.escrow_backend == "sql":
        await create_tables(engine)
    yield


app = FastAPI(title="Goal Escrow", version="0.1.0", lifespan=lifespan)
app.include_router(escrow_router)


@app.exception_handler(EscrowError)
async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "escrow": {
            "wallet": "/wallet",
            "goals": "/goals",
            "goal": "/goals/{goal_id}",
            "submit_proof": "/goals/{goal_id}/milestones/{milestone_id}/proof",
            "close_goal": "/goals/{goal_id}/close",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
