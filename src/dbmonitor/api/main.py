from fastapi import FastAPI, HTTPException, Request, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import json
import logging
from dbmonitor.api.ai import router as ai_router
from dbmonitor.api.targets import router as targets_router
from dbmonitor.config import get_settings
from dbmonitor.infrastructure.db import healthcheck
from dbmonitor.infrastructure.redis_client import redis_available
from dbmonitor.tasks.jobs import JOBS, UnknownJobError, run_job, run_all_jobs

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(title="PostgreSQL Fleet Monitor API", version="0.1.0")
app.include_router(targets_router)
app.include_router(ai_router)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logging.getLogger("app").error(json.dumps({
        "event": "error",
        "path": request.url.path,
        "detail": str(exc),
        "type": exc.__class__.__name__,
    }))
    return Response(content=json.dumps({"error": "internal_error"}), media_type="application/json", status_code=500)


@app.get("/health")
def health():
    return {"db": healthcheck(), "status": "ok"}


@app.get("/ready")
def readiness():
    """Readiness probe: store reachable; Redis reported but not required."""
    db_ok = healthcheck()
    redis_ok = redis_available()
    return {"status": "ok" if db_ok and redis_ok else "degraded", "db": db_ok, "redis": redis_ok}


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/jobs/run")
def run_all():
    return run_all_jobs()


@app.post("/jobs/{name}/run")
def run_one(name: str):
    try:
        return run_job(name)
    except UnknownJobError:
        raise HTTPException(status_code=404, detail=f"unknown job; expected one of {sorted(JOBS)}")
