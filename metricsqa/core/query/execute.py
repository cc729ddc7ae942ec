"""
EXECUTE MODULE - Run a model-produced query against the metrics table

Data Flow:
    "[ ... ]"  -> parse_pipeline() -> compile_pipeline() -> rows as plain dicts
    anything   -> extract_json() -> compile_filter() -> MetricResponse rows
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from metricsqa.core import models, schemas
from metricsqa.core.exceptions import QueryExecutionError
from metricsqa.core.query.compile import compile_filter, compile_pipeline, metric_columns
from metricsqa.core.query.extract import extract_json, parse_pipeline

logger = logging.getLogger(__name__)

QueryRow = Union[schemas.MetricResponse, Dict[str, Any]]


def is_pipeline(query_text: str) -> bool:
    """A query is an aggregation pipeline exactly when it opens with "["."""
    return query_text.strip().startswith("[")


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def to_document(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Make a result row JSON-ready and fold "_id.<key>" columns back into a
    nested _id object.

    Example:
        {"_id.circle": "North", "_id.service_type": "Jio5G", "count": 3}
        -> {"_id": {"circle": "North", "service_type": "Jio5G"}, "count": 3}
    """
    document: Dict[str, Any] = {}
    for key, value in row.items():
        if key.startswith("_id."):
            document.setdefault("_id", {})[key[4:]] = _plain(value)
        else:
            document[key] = _plain(value)
    return document


class QueryExecutor:
    """Execute filter or aggregation text against the metrics table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def execute(self, query_text: str) -> List[QueryRow]:
        """
        Dispatch on the query's shape and run it.

        Returns:
            MetricResponse rows for filters, plain dicts for pipelines

        Raises:
            QueryExecutionError: malformed JSON, unknown names, store failures
        """
        cleaned = query_text.strip()
        if is_pipeline(cleaned):
            return await self.run_aggregation(cleaned)
        return await self.run_filter(extract_json(cleaned))

    async def run_filter(self, filter_json: str) -> List[schemas.MetricResponse]:
        try:
            document = json.loads(filter_json)
        except ValueError as error:
            raise QueryExecutionError(f"Filter is not valid JSON: {error}") from error

        stmt = select(models.MetricRecord).where(
            compile_filter(document, metric_columns())
        )
        result = await self._run(stmt)
        records = result.scalars().all()
        logger.info(f"Filter query matched {len(records)} metric records")
        return [schemas.MetricResponse.model_validate(record) for record in records]

    async def run_aggregation(self, pipeline_json: str) -> List[Dict[str, Any]]:
        pipeline = parse_pipeline(pipeline_json)
        stmt = compile_pipeline(pipeline)
        result = await self._run(stmt)
        documents = [to_document(dict(row)) for row in result.mappings().all()]
        logger.info(
            f"Aggregation with {len(pipeline)} stages returned {len(documents)} documents"
        )
        return documents

    async def _run(self, stmt):
        try:
            return await self.db.execute(stmt)
        except SQLAlchemyError as error:
            await self.db.rollback()
            logger.error(f"Metrics store rejected query: {error}")
            raise QueryExecutionError(f"Metrics store rejected the query: {error}") from error
