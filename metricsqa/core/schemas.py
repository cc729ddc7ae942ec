from datetime import datetime
from typing import Optional, List, Dict, Any
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =========================
# Enums
# =========================
class QueryType(str, Enum):
    QUERY = "query"
    AGGREGATION = "aggregation"


# =========================
# METRICS
# =========================
class MetricBase(BaseModel):
    active_users: Optional[int] = None
    availability_pct: Optional[float] = None
    avg_latency_ms: Optional[float] = None
    circle: Optional[str] = None
    error_rate_pct: Optional[float] = None
    health_status: Optional[str] = None
    kpi_health_score: Optional[float] = None
    kpi_timestamp: Optional[datetime] = None
    packet_loss_pct: Optional[float] = None
    service_type: Optional[str] = None
    site_id: Optional[str] = None
    throughput_mbps: Optional[float] = None


class MetricCreate(MetricBase):
    # Clients may pick their own identifier, otherwise one is generated
    id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("_id", "id"), max_length=64
    )


class MetricUpdate(MetricBase):
    pass


class MetricResponse(MetricBase):
    id: str = Field(serialization_alias="_id")

    model_config = ConfigDict(from_attributes=True)

    def to_document(self) -> Dict[str, Any]:
        """JSON-ready mapping keyed by document field names."""
        return self.model_dump(mode="json", by_alias=True)


class MetricsQueryRequest(BaseModel):
    """
    Direct query against the metrics store.
    `data` holds the filter object or aggregation array as JSON text.
    """

    type: QueryType = QueryType.QUERY
    data: str


# =========================
# TEXT GENERATION
# =========================
class SamplingParams(BaseModel):
    """Explicit sampling overrides. Unset fields are not sent upstream."""

    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None


class GenerateRequest(BaseModel):
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateAdvancedRequest(GenerateRequest):
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None


# =========================
# AI QUERY PIPELINE
# =========================
class MessageRequest(BaseModel):
    message: Optional[str] = None


class PipelineResult(BaseModel):
    """
    Outcome of one pass through the question-answering pipeline.

    Fields belonging to stages that never ran keep their zero values.
    Exactly one of (success and response) or (not success and error) holds.
    """

    original_message: str
    entity_identification: str = ""
    mongo_query: str = ""
    query_results: List[Dict[str, Any]] = []
    result_count: int = 0
    response: str = ""
    success: bool = False
    error: Optional[str] = None

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )
