import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from metricsqa.api.responses import error_payload
from metricsqa.api.router import api_router
from metricsqa.core.config import settings
from metricsqa.core.database import create_tables, engine
from metricsqa.core.exceptions import (
    GenerationError,
    QueryExecutionError,
    UpstreamUnavailable,
    ValidationError,
)

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


# Close the engine once everything is done and close all the sessions
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Make sure the metrics table exists before serving
    try:
        await create_tables()
        logger.info("Metrics tables ready")
    except Exception as e:
        logger.error(f"Table creation error during startup: {e}")

    yield
    await engine.dispose()


app = FastAPI(title="Metrics Question Answering API", lifespan=lifespan)

# Include the master router containing all our endpoints
app.include_router(api_router)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content=error_payload(str(exc))
    )


@app.exception_handler(QueryExecutionError)
async def query_error_handler(request: Request, exc: QueryExecutionError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST, content=error_payload(str(exc))
    )


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError):
    logger.error(f"Generation request failed: {exc}")
    code = (
        status.HTTP_503_SERVICE_UNAVAILABLE
        if isinstance(exc, UpstreamUnavailable)
        else status.HTTP_502_BAD_GATEWAY
    )
    return JSONResponse(status_code=code, content=error_payload(str(exc)))


@app.get("/")
async def root():
    return {"message": "Welcome to the Metrics Question Answering API"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
