from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from metricsqa.ai_feature.llm_client import OllamaClient, get_llm_client
from metricsqa.ai_feature.service import AIQueryService, validate_message
from metricsqa.api.responses import timestamp_ms
from metricsqa.core import schemas
from metricsqa.core.database import get_db

router = APIRouter(prefix="/api/ai-query", tags=["AI Query"])

db_dep = Annotated[AsyncSession, Depends(get_db)]
llm_dep = Annotated[OllamaClient, Depends(get_llm_client)]


@router.post("/message")
async def process_message(request: schemas.MessageRequest, db: db_dep, llm: llm_dep):
    """
    Answer a natural-language question about the network metrics.
    Pipeline failures still return 200 with success=false and an error.
    """
    message = validate_message(request.message)
    result = await AIQueryService(llm, db).process_query(message)
    return {**result.model_dump(by_alias=True), "timestamp": timestamp_ms()}


@router.get("/health")
async def health_check():
    return {
        "success": True,
        "status": "AI Query Service is running",
        "timestamp": timestamp_ms(),
    }


@router.get("/docs")
async def get_documentation():
    """Describe the message endpoint for API consumers."""
    return {
        "endpoint": "/api/ai-query/message",
        "method": "POST",
        "description": "Process natural language queries using the four-step AI query pipeline",
        "requestBody": {"message": "The user's natural language query (string)"},
        "responseBody": {
            "success": "Boolean indicating if the query was processed successfully",
            "originalMessage": "The original user message",
            "entityIdentification": "AI's identification of which table/entity is being queried",
            "mongoQuery": "The generated query (filter object or aggregation array)",
            "resultCount": "Number of results returned",
            "queryResults": "Array of data returned from the database",
            "response": "Formatted response from AI based on the data",
            "error": "Failure description when success is false",
            "timestamp": "Timestamp of the request (ms)",
        },
        "examples": {
            "example1": {
                "question": "What is the availability in Karnataka?",
                "expected": "Identifies the metrics table, builds a filter on circle, "
                "executes it and summarizes availability",
            },
            "example2": {
                "question": "Show me all sites with error rate above 5%",
                "expected": "Queries for sites matching the condition and provides a summary",
            },
        },
    }
