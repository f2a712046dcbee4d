from __future__ import annotations

from fastapi import APIRouter

from kajig.api.deps import get_registry
from kajig.models.schemas import BackendInfo, BackendsResponse

router = APIRouter(prefix="/api/backends", tags=["backends"])


@router.get("", response_model=BackendsResponse)
async def list_backends():
    """List registered chat backends."""
    registry = get_registry()
    return BackendsResponse(
        backends=[
            BackendInfo(
                id=d.id,
                name=d.name,
                relaxed=d.relaxed,
                default=d.default,
                description=d.description,
            )
            for d in registry.get_all()
        ]
    )
