from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

import redis

from tabletop.api.routes import router
from tabletop.settings import log_level_from_env

app = FastAPI(title="tabletop", version="0.1.0")
app.include_router(router)
# Configure logging
logging.basicConfig(level=log_level_from_env())
logger = logging.getLogger(__name__)


@app.exception_handler(redis.RedisError)
async def _store_unavailable(request: Request, exc: redis.RedisError) -> JSONResponse:
    logger.error("store failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error", "code": "INTERNAL"})


@app.get("/info")
async def info() -> dict[str, str]:
    return {"name": "tabletop", "version": "0.1.0"}
