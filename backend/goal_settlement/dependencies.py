from fastapi import HTTPException

from .database import build_goal_cache
from .services.contract_gateway import ContractGateway
from .services.orchestrator import SavingsGoalOrchestrator
from .services.prover_client import ProofGenerationClient
from .services.scheduler import ReconcileScheduler
from .services.vault_gateway import VaultGateway

# Built once per process by the app lifespan and injected into routes.
orchestrator: SavingsGoalOrchestrator | None = None


async def init_orchestrator() -> SavingsGoalOrchestrator:
    global orchestrator

    orchestrator = SavingsGoalOrchestrator(
        cache=await build_goal_cache(),
        vault=VaultGateway(),
        prover=ProofGenerationClient(),
        contract=ContractGateway(),
        scheduler=ReconcileScheduler(),
    )
    return orchestrator


async def shutdown_orchestrator() -> None:
    global orchestrator

    if orchestrator is None:
        return

    # Let in-flight vault/contract writes land before the pool closes.
    await orchestrator.scheduler.drain()
    orchestrator = None


def get_orchestrator() -> SavingsGoalOrchestrator:
    if orchestrator is None:
        raise HTTPException(status_code=500, detail="Settlement service is not initialized")
    return orchestrator
