from fastapi import APIRouter
from metricsqa.api.endpoints import ai_query, llm, metrics

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(ai_query.router)
api_router.include_router(llm.router)
api_router.include_router(metrics.router)
