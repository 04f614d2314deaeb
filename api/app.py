from __future__ import annotations
import logging
import time
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.config import API_VERSION, LOG_LEVEL
from api.errors import AppError
from api.activity_api import router as activity_router
from api.agent_api import router as agent_router
from api.billing_api import router as billing_router
from api.config_api import router as config_router
from api.heartbeat_api import router as heartbeat_router
from api.maintenance_api import router as maintenance_router
from api.settings_api import router as settings_router
from db.timestamps import to_iso, utc_now

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger("api")

app = FastAPI(title="Agent Sync API")

app.include_router(heartbeat_router)
app.include_router(agent_router)
app.include_router(config_router)
app.include_router(billing_router)
app.include_router(settings_router)
app.include_router(activity_router)
app.include_router(maintenance_router)

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": f"UNHANDLED: {type(exc).__name__}"}
    )

# ===============================
# Request log
# ===============================
@app.middleware("http")
async def request_log_middleware(request: Request, call_next):
    if request.url.path in ("/docs", "/openapi.json", "/favicon.ico"):
        return await call_next(request)

    start = time.time()
    status_code = 500
    try:
        resp = await call_next(request)
        status_code = resp.status_code
        return resp
    finally:
        logger.info("%s %s -> %s (%d ms)", request.method, request.url.path,
                    status_code, int((time.time() - start) * 1000))

# -----------------------
# Health (no auth)
# -----------------------
@app.get("/v1/api/health")
def health():
    return {"status": "ok", "version": API_VERSION, "timestamp": to_iso(utc_now())}

@app.get("/")
def root():
    return {"name": "Agent Sync API", "status": "running", "docs": "/docs"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.app:app", host="0.0.0.0", port=8000, reload=False)
