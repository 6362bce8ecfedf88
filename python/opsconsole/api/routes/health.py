"""Health check endpoints."""

from fastapi import APIRouter

from opsconsole.responses import success_response

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Liveness check endpoint.

    Returns 200 if the process is running. Cosmos DB and Service Bus are
    not contacted: their clients are only created on first use.
    """
    return success_response({"status": "ok"})
