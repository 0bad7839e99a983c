# /flowchat/main.py

import os
import time
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from flowchat.config.settings import settings
from flowchat.errors import FlowChatError
from flowchat.utils.lifecycle import lifespan
from flowchat.utils.metrics import response_time_histogram
from flowchat.utils.rate_limiter import limiter
from flowchat.routes import public, flows, sessions, actions

app = FastAPI(
    title="Flow Chat Assistant",
    version="1.0.0",
    description="Flow-scoped retrieval-augmented chat for low-code host platforms",
    lifespan=lifespan,
    openapi_url=f"/api/{settings.api_version}/openapi.json" if settings.environment != "production" else None,
    docs_url=f"/api/{settings.api_version}/docs" if settings.environment != "production" else None,
    redoc_url=f"/api/{settings.api_version}/redoc" if settings.environment != "production" else None,
)

# --- Rate Limiting ---
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# --- Errors ---
@app.exception_handler(FlowChatError)
async def flowchat_error_handler(request: Request, exc: FlowChatError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.code, "message": exc.message},
    )


# --- Middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(SlowAPIMiddleware)


@app.middleware("http")
async def performance_middleware(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    route = request.scope.get("route")
    response_time_histogram.labels(endpoint=getattr(route, "path", request.url.path)).observe(process_time)
    response.headers["X-Process-Time"] = str(process_time)
    return response


# --- API Routers ---
app.include_router(public.router)
app.include_router(flows.router, prefix=f"/api/{settings.api_version}")
app.include_router(sessions.router, prefix=f"/api/{settings.api_version}")
app.include_router(actions.router, prefix=f"/api/{settings.api_version}")

# --- Main Entry Point for Uvicorn (for local development) ---
if __name__ == "__main__":
    port = int(os.getenv("PORT", "8000"))
    host = os.getenv("HOST", "127.0.0.1")

    # Sessions live in process memory, so the service runs as a single worker.
    uvicorn.run(
        "flowchat.main:app",
        host=host,
        port=port,
        reload=settings.environment == "development",
        workers=1,
    )
