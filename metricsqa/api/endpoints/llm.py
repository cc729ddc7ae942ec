from typing import Annotated

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from metricsqa.ai_feature.llm_client import OllamaClient, get_llm_client
from metricsqa.api.responses import timestamp_ms
from metricsqa.core import schemas
from metricsqa.core.config import settings
from metricsqa.core.exceptions import ValidationError

router = APIRouter(prefix="/api/llm", tags=["Text Generation"])

llm_dep = Annotated[OllamaClient, Depends(get_llm_client)]


def validate_prompts(request: schemas.GenerateRequest):
    if not request.system_prompt or not request.system_prompt.strip():
        raise ValidationError("systemPrompt cannot be empty")
    if not request.user_prompt or not request.user_prompt.strip():
        raise ValidationError("userPrompt cannot be empty")


def validate_sampling_params(params: schemas.SamplingParams):
    """Range checks happen here; the client sends whatever it is given."""
    if params.temperature is not None and not 0.0 <= params.temperature <= 2.0:
        raise ValidationError("temperature must be between 0.0 and 2.0")
    if params.top_p is not None and not 0.0 <= params.top_p <= 1.0:
        raise ValidationError("topP must be between 0.0 and 1.0")


@router.post("/generate")
async def generate(request: schemas.GenerateRequest, llm: llm_dep):
    validate_prompts(request)
    completion = await llm.generate(request.system_prompt, request.user_prompt)
    return {
        "success": True,
        "response": completion,
        "systemPrompt": request.system_prompt,
        "userPrompt": request.user_prompt,
        "timestamp": timestamp_ms(),
    }


@router.post("/generate-advanced")
async def generate_advanced(request: schemas.GenerateAdvancedRequest, llm: llm_dep):
    """Generate with explicit sampling overrides (temperature, topP, topK)."""
    validate_prompts(request)
    params = schemas.SamplingParams(
        temperature=request.temperature, top_p=request.top_p, top_k=request.top_k
    )
    validate_sampling_params(params)

    completion = await llm.generate(request.system_prompt, request.user_prompt, params)
    return {
        "success": True,
        "response": completion,
        "systemPrompt": request.system_prompt,
        "userPrompt": request.user_prompt,
        "parameters": {
            "temperature": params.temperature
            if params.temperature is not None
            else settings.LLM_TEMPERATURE,
            "topP": params.top_p if params.top_p is not None else settings.LLM_TOP_P,
            "topK": params.top_k if params.top_k is not None else settings.LLM_TOP_K,
        },
        "timestamp": timestamp_ms(),
    }


@router.get("/health")
async def health_check(llm: llm_dep):
    available = await llm.is_available()
    body = {
        "success": available,
        "status": "Generation service is running"
        if available
        else "Generation service is not available",
        "timestamp": timestamp_ms(),
    }
    if not available:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


@router.get("/models")
async def get_models(llm: llm_dep):
    models = await llm.list_models()
    return {"success": True, "models": models, "timestamp": timestamp_ms()}
