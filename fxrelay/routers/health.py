from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/healthz", summary="Liveness probe")
async def healthz():
    return {"ok": True}


@router.get("/readyz", summary="Readiness probe (valid rates cached)")
async def readyz(request: Request):
    state = request.app.state
    ready = state.rate_cache.is_valid(state.clock())
    scheduler = state.scheduler
    body = {
        "ready": ready,
        "refresh_state": scheduler.state.value if scheduler is not None else None,
    }
    return JSONResponse(status_code=200 if ready else 503, content=body)
