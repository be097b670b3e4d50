from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from studio_push.api.routes import notifications
from studio_push.config import get_settings
from studio_push.core.exceptions import global_exception_handler
from studio_push.core.lifespan import lifespan

settings = get_settings()

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=False, allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"], allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-task-secret"])

app.add_exception_handler(Exception, global_exception_handler)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(notifications.router, tags=["notifications"])
