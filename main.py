import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import LOG_LEVEL
from app.dependencies import insight_dispatcher
from app.routers import insights, transactions

logging.basicConfig(format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=LOG_LEVEL)
logger = logging.getLogger(__name__)


# --- Lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Finsight API starting")

    yield

    # Graceful Shutdown: let fire-and-forget passes finish
    if insight_dispatcher.pending:
        logger.info(f"Waiting for {insight_dispatcher.pending} insight passes...")
    await insight_dispatcher.drain()
    logger.info("Finsight API stopped")


# --- FastAPI Initialization ---
app = FastAPI(title="Finsight Insights API", lifespan=lifespan)

# --- CORS ---
origins = ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- API Routers ---
app.include_router(transactions.router, prefix="/api")
app.include_router(insights.router, prefix="/api")


@app.get("/health")
async def health():
    return {"status": "ok", "service": "finsight"}
