"""
Client for an Ollama-compatible text-generation endpoint.

One request per call, no retries: a failed call surfaces immediately and the
caller decides what to do. Every call carries an explicit, finite timeout.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from metricsqa.core.config import settings
from metricsqa.core.exceptions import EmptyCompletion, UpstreamError, UpstreamUnavailable
from metricsqa.core.schemas import SamplingParams

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"
TAGS_PATH = "/api/tags"


def default_sampling_params() -> SamplingParams:
    return SamplingParams(
        temperature=settings.LLM_TEMPERATURE,
        top_p=settings.LLM_TOP_P,
        top_k=settings.LLM_TOP_K,
    )


class OllamaClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.model = model or settings.LLM_MODEL
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS
        # Tests inject httpx.MockTransport here
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        )

    def build_payload(
        self, system_text: str, user_text: str, params: Optional[SamplingParams] = None
    ) -> Dict[str, Any]:
        """
        Request body for /api/generate.

        System and user text are joined with a blank line. Without `params`
        the configured defaults are sent; with `params` only the fields that
        are set go out.
        """
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": f"{system_text}\n\n{user_text}",
            "stream": False,
        }
        sampling = params if params is not None else default_sampling_params()
        payload.update(sampling.model_dump(exclude_none=True))
        return payload

    async def generate(
        self, system_text: str, user_text: str, params: Optional[SamplingParams] = None
    ) -> str:
        """
        Send one prompt and return the raw completion text.

        Raises:
            UpstreamUnavailable: endpoint unreachable or timed out
            UpstreamError: non-success status or unparsable body
            EmptyCompletion: body has no completion text
        """
        payload = self.build_payload(system_text, user_text, params)
        logger.debug(
            f"Calling {self.base_url}{GENERATE_PATH} model={self.model} "
            f"prompt_chars={len(payload['prompt'])}"
        )

        body = await self._request("POST", GENERATE_PATH, json=payload)

        completion = body.get("response")
        if completion is None or not isinstance(completion, str) or not completion.strip():
            raise EmptyCompletion("Empty response from generation endpoint")
        return completion

    async def is_available(self) -> bool:
        """Cheap reachability probe; never raises."""
        try:
            async with self._client() as client:
                response = await client.get(TAGS_PATH)
            return response.is_success
        except httpx.HTTPError as error:
            logger.warning(f"Generation endpoint not reachable: {error}")
            return False

    async def list_models(self) -> Dict[str, Any]:
        """Return the endpoint's /api/tags listing."""
        return await self._request("GET", TAGS_PATH)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TransportError as error:
            raise UpstreamUnavailable(
                f"Generation endpoint unreachable at {self.base_url}: {error}"
            ) from error
        except httpx.RequestError as error:
            raise UpstreamError(f"Generation request failed: {error}") from error

        if response.is_error:
            raise UpstreamError(
                f"Generation endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as error:
            raise UpstreamError(
                f"Generation endpoint returned an unparsable body: {error}",
                status_code=response.status_code,
            ) from error

        if not isinstance(body, dict):
            raise UpstreamError(
                "Generation endpoint returned a non-object body",
                status_code=response.status_code,
            )
        return body


# Dependency, overridden in tests
def get_llm_client() -> OllamaClient:
    return OllamaClient()
