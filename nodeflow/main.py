"""
NodeFlow - FastAPI Application Entry Point.

Runs node/edge pipelines of shell commands, model prompts and static text,
streaming per-node status to the editor.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from nodeflow.config import settings
from nodeflow.api.routes import websocket, workflow, workflows
from nodeflow.engine.errors import (
    CyclicGraph,
    InvalidGraph,
    RunAlreadyActive,
    ValidationFailed,
)
from nodeflow.storage.workflows import InvalidWorkflowName


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    yield

    # Shutdown
    await workflow.rest_session.close()
    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## NodeFlow API

Execution engine for node/edge pipelines built in the workflow editor.

### Node kinds
- **cli**: run a shell command; `${1}`, `${2}`, ... insert upstream results
- **llm**: send a prompt to the generation backend
- **input**: static text
- **preview**: show upstream results

### Quick Start
1. Inspect the execution order: `POST /workflow/plan`
2. Run the workflow: `POST /workflow/run`
3. Cancel a background run: `POST /workflow/cancel`
4. Stream a run from the editor: `WS /ws/workflow`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(workflow.router)
app.include_router(workflows.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "Execution engine for command, prompt and text pipelines",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "plan": "/workflow/plan",
            "run": "/workflow/run",
            "cancel": "/workflow/cancel",
            "state": "/workflow/state",
            "workflows": "/workflows",
            "websocket": "/ws/workflow",
        },
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    from nodeflow.storage.workflows import workflow_store

    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "run_active": workflow.rest_session.is_running,
        "workflows_count": len(workflow_store),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(InvalidGraph)
@app.exception_handler(CyclicGraph)
@app.exception_handler(InvalidWorkflowName)
async def bad_graph_handler(request: Request, exc: Exception):
    """Structural errors in the submitted graph."""
    return JSONResponse(
        status_code=400,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


@app.exception_handler(ValidationFailed)
async def validation_failed_handler(request: Request, exc: ValidationFailed):
    """Nodes missing required fields; ``errors`` maps node id to reason."""
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationFailed", "detail": str(exc), "errors": exc.errors},
    )


@app.exception_handler(RunAlreadyActive)
async def run_active_handler(request: Request, exc: RunAlreadyActive):
    return JSONResponse(
        status_code=409,
        content={"error": "RunAlreadyActive", "detail": str(exc)},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
