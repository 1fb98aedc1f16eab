from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from impactly.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root():
    return {"ok": True}

@router.get("/queue")
def health_queue(request: Request):
    queue = getattr(request.app.state, "task_queue", None)
    if queue is None:
        return JSONResponse({"ok": False, "error": "task queue not configured"}, status_code=503)
    try:
        return {"ok": True, **queue.stats()}
    except Exception as e:
        return JSONResponse({"ok": False, "error": str(e)}, status_code=503)

@router.get("/rate-limit")
def health_rate_limit(request: Request):
    return rate_limit_health_info(request)
