from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(request: Request) -> dict:
    """Liveness probe.

    Also reports how many rate limit windows are currently held in memory,
    which is the figure the reaper keeps bounded.
    """

    store = request.app.state.admission_controller.store
    return {"status": "ok", "tracked_windows": len(store)}
