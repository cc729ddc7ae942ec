import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from metricsqa.ai_feature.service import rows_to_documents
from metricsqa.core import models, schemas
from metricsqa.core.database import get_db
from metricsqa.core.query.execute import QueryExecutor

router = APIRouter(prefix="/api/metrics", tags=["Metrics"])

db_dep = Annotated[AsyncSession, Depends(get_db)]


def to_document(metric: models.MetricRecord):
    return schemas.MetricResponse.model_validate(metric).to_document()


async def get_metric_or_404(metric_id: str, db: AsyncSession) -> models.MetricRecord:
    metric = await db.get(models.MetricRecord, metric_id)
    if metric is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Metrics not found with ID: {metric_id}",
        )
    return metric


# Run a filter or aggregation directly (no model involved)
@router.post("/query")
async def execute_query(request: schemas.MetricsQueryRequest, db: db_dep):
    executor = QueryExecutor(db)
    if request.type == schemas.QueryType.AGGREGATION:
        rows = await executor.run_aggregation(request.data)
    else:
        rows = await executor.run_filter(request.data)

    documents = rows_to_documents(rows)
    return {
        "success": True,
        "type": request.type.value,
        "data": documents,
        "count": len(documents),
    }


@router.get("/all")
async def get_all_metrics(db: db_dep):
    result = await db.execute(select(models.MetricRecord))
    documents = [to_document(metric) for metric in result.scalars().all()]
    return {"success": True, "data": documents, "count": len(documents)}


@router.get("/{metric_id}")
async def get_metric(metric_id: str, db: db_dep):
    metric = await get_metric_or_404(metric_id, db)
    return {"success": True, "data": to_document(metric)}


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_metric(metric: schemas.MetricCreate, db: db_dep):
    try:
        new_metric = models.MetricRecord(**metric.model_dump(exclude_none=True))
        db.add(new_metric)
        await db.commit()
        await db.refresh(new_metric)
    except Exception as error:
        await db.rollback()
        logging.error(f"Failed to create metric: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create metrics",
        )

    return {
        "success": True,
        "message": "Metrics created successfully",
        "data": to_document(new_metric),
    }


# Full replacement: fields left out of the body are cleared
@router.put("/{metric_id}")
async def update_metric(metric_id: str, metric: schemas.MetricUpdate, db: db_dep):
    existing = await get_metric_or_404(metric_id, db)

    for key, value in metric.model_dump().items():
        setattr(existing, key, value)

    try:
        await db.commit()
        await db.refresh(existing)
    except Exception as error:
        await db.rollback()
        logging.error(f"Failed to update metric {metric_id}: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Update failed"
        )

    return {
        "success": True,
        "message": "Metrics updated successfully",
        "data": to_document(existing),
    }


@router.delete("/{metric_id}")
async def delete_metric(metric_id: str, db: db_dep):
    metric = await get_metric_or_404(metric_id, db)
    try:
        await db.delete(metric)
        await db.commit()
    except Exception as error:
        await db.rollback()
        logging.error(f"Failed to delete metric {metric_id}: {error}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete metrics",
        )
    return {"success": True, "message": "Metrics deleted successfully"}
