"""Question-answering pipeline over the metrics store.

Flow:
1. Identify the entity the question is about
2. Build a filter / aggregation query for it
3. Execute the query against the metrics table
4. Compose the final answer from the rows

Every stage needs the previous stage's output, so they run strictly in order.
The first failing stage ends the run: the caller always gets a
PipelineResult back, never an exception. Nothing is retried here; callers
that want resilience retry the whole pipeline.
"""

import json
import logging
import time
from enum import Enum
from typing import Any, Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from metricsqa.ai_feature import prompts
from metricsqa.ai_feature.llm_client import OllamaClient
from metricsqa.core.exceptions import MetricsQAError, ValidationError
from metricsqa.core.query.execute import QueryExecutor, QueryRow
from metricsqa.core.schemas import MetricResponse, PipelineResult

logger = logging.getLogger(__name__)


class QueryStage(Enum):
    """Pipeline stages, valued by the name used in error messages."""

    IDENTIFY = "entity identification"
    BUILD_QUERY = "query builder"
    EXECUTE = "query execution"
    FORMAT = "response formatting"


def validate_message(message: Any) -> str:
    """Reject missing or blank questions before the pipeline is entered."""
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Message cannot be empty")
    return message


def rows_to_documents(rows: List[QueryRow]) -> List[Dict[str, Any]]:
    return [row.to_document() if isinstance(row, MetricResponse) else row for row in rows]


class AIQueryService:
    def __init__(self, llm: OllamaClient, db: AsyncSession):
        self.llm = llm
        self.executor = QueryExecutor(db)

    async def identify_entity(self, message: str) -> str:
        return await self.llm.generate(prompts.ENTITY_IDENTIFICATION_PROMPT, message)

    async def build_query(self, message: str, entity_identification: str) -> str:
        return await self.llm.generate(
            prompts.QUERY_BUILDER_PROMPT,
            prompts.build_query_user_text(message, entity_identification),
        )

    async def execute_query(self, query: str) -> List[Dict[str, Any]]:
        return rows_to_documents(await self.executor.execute(query))

    async def format_response(
        self,
        message: str,
        entity_identification: str,
        query: str,
        documents: List[Dict[str, Any]],
    ) -> str:
        results_json = json.dumps(documents, default=str)
        return await self.llm.generate(
            prompts.RESPONSE_FORMATTING_PROMPT,
            prompts.build_response_user_text(
                message, entity_identification, query, results_json
            ),
        )

    async def process_query(self, message: str) -> PipelineResult:
        """
        Run all four stages for one question.

        Args:
            message: The user's natural-language question

        Returns:
            PipelineResult with success=True and every field populated, or
            success=False, `error` naming the failed stage, and the fields of
            stages that never completed left at their zero values
        """
        fields: Dict[str, Any] = {"original_message": message}
        stage = QueryStage.IDENTIFY
        started = time.perf_counter()

        try:
            fields["entity_identification"] = await self.identify_entity(message)
            logger.info(f"{stage.value}: {fields['entity_identification'][:120]!r}")

            stage = QueryStage.BUILD_QUERY
            fields["mongo_query"] = await self.build_query(
                message, fields["entity_identification"]
            )
            logger.info(f"{stage.value}: {fields['mongo_query'][:200]!r}")

            stage = QueryStage.EXECUTE
            documents = await self.execute_query(fields["mongo_query"])
            fields["query_results"] = documents
            fields["result_count"] = len(documents)
            logger.info(f"{stage.value}: {len(documents)} rows")

            stage = QueryStage.FORMAT
            fields["response"] = await self.format_response(
                message,
                fields["entity_identification"],
                fields["mongo_query"],
                documents,
            )
        except MetricsQAError as error:
            logger.warning(f"Pipeline stopped at {stage.value}: {error}")
            return PipelineResult(
                **fields, success=False, error=f"Error in {stage.value} step: {error}"
            )
        except Exception as error:
            logger.exception(f"Unexpected failure in {stage.value} step")
            return PipelineResult(
                **fields, success=False, error=f"Error in {stage.value} step: {error}"
            )

        logger.info(
            f"Pipeline completed in {time.perf_counter() - started:.2f}s "
            f"({fields['result_count']} rows)"
        )
        return PipelineResult(**fields, success=True)
