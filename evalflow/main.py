"""evalflow FastAPI application."""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from evalflow.api.assignments import router as assignments_router
from evalflow.api.committee import router as committee_router
from evalflow.api.evaluations import router as evaluations_router
from evalflow.api.health import router as health_router
from evalflow.config import settings
from evalflow.engine.errors import WorkflowError

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="evalflow - Evaluation Review Workflow",
    description="Section-gated multi-party review of procurement evaluation reports",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    """Translate workflow errors into JSON responses with a stable code."""
    logger.info(
        "%s %s rejected: %s (%s)", request.method, request.url.path, exc.message, exc.code
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


app.include_router(health_router, tags=["Health"])
app.include_router(evaluations_router, prefix="/v1", tags=["Evaluations"])
app.include_router(assignments_router, prefix="/v1", tags=["Assignments"])
app.include_router(committee_router, prefix="/v1", tags=["Committee"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {"service": "evalflow", "version": "0.1.0", "docs": "/docs"}
