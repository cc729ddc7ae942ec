import uuid

from sqlalchemy import Column, Float, Integer, String, TIMESTAMP

from metricsqa.core.database import Base


def new_metric_id() -> str:
    return uuid.uuid4().hex


# =========================
# MetricRecord (one KPI observation for a site)
# =========================
class MetricRecord(Base):
    """
    One network KPI sample.

    Every value column is nullable: samples arrive from several collectors
    and not all of them report every KPI.
    """

    __tablename__ = "general_metrics"

    # Exposed as "_id" in documents and API payloads
    id = Column(String(64), primary_key=True, default=new_metric_id)

    active_users = Column(Integer)
    availability_pct = Column(Float)  # 0-100
    avg_latency_ms = Column(Float)
    circle = Column(String, index=True)  # "Karnataka", "North", ...
    error_rate_pct = Column(Float)  # 0-100
    health_status = Column(String)  # GOOD / WARNING / CRITICAL
    kpi_health_score = Column(Float)  # 0-100
    kpi_timestamp = Column(TIMESTAMP(timezone=True))
    packet_loss_pct = Column(Float)  # 0-100
    service_type = Column(String, index=True)  # "Jio5G", "Jio4G"
    site_id = Column(String, index=True)
    throughput_mbps = Column(Float)


# Document field name -> ORM attribute name. Only these names may appear in
# model-produced filters and pipelines.
METRIC_FIELDS = {
    "_id": "id",
    "active_users": "active_users",
    "availability_pct": "availability_pct",
    "avg_latency_ms": "avg_latency_ms",
    "circle": "circle",
    "error_rate_pct": "error_rate_pct",
    "health_status": "health_status",
    "kpi_health_score": "kpi_health_score",
    "kpi_timestamp": "kpi_timestamp",
    "packet_loss_pct": "packet_loss_pct",
    "service_type": "service_type",
    "site_id": "site_id",
    "throughput_mbps": "throughput_mbps",
}
