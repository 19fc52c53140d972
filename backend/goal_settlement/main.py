from contextlib import asynccontextmanager

from fastapi import FastAPI

from .config import settings
from .database import close_db_pool, init_db_pool
from .dependencies import init_orchestrator, shutdown_orchestrator
from .goals import router as goals_router
from .logger import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    await init_db_pool()
    await init_orchestrator()
    logger.info(
        "service_started",
        network=settings.stellar_network,
        contract_configured=bool(settings.savings_goals_contract),
    )
    yield
    await shutdown_orchestrator()
    await close_db_pool()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.include_router(goals_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
