import json
from datetime import datetime, timezone

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from metricsqa.main import app
from metricsqa.core import models
from metricsqa.core.database import Base, get_db
from metricsqa.ai_feature.llm_client import OllamaClient, get_llm_client

# Every test gets its own in-memory database
TEST_DATABASE_URL = "sqlite+aiosqlite://"
TEST_LLM_URL = "http://llm.test"


class ScriptedModel:
    """
    Stand-in for the generation endpoint.

    Completions are served in call order. An entry may be a string (returned
    as the completion), an httpx.Response (returned as is) or an exception
    (raised by the transport, e.g. httpx.ConnectError).
    """

    def __init__(self, *completions):
        self.completions = list(completions)
        self.requests = []
        self.tags_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            return httpx.Response(
                self.tags_status, json={"models": [{"name": "qwen2.5-coder:3b"}]}
            )

        body = json.loads(request.content)
        self.requests.append(body)
        if not self.completions:
            raise AssertionError("Model called more times than scripted")

        completion = self.completions.pop(0)
        if isinstance(completion, Exception):
            raise completion
        if isinstance(completion, httpx.Response):
            return completion
        return httpx.Response(
            200, json={"model": body["model"], "response": completion, "done": True}
        )

    def client(self) -> OllamaClient:
        return OllamaClient(
            base_url=TEST_LLM_URL, transport=httpx.MockTransport(self.handler)
        )


# Create the tables for each test and drop the engine once it is done
@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine):
    session_factory = async_sessionmaker(
        db_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def model():
    return ScriptedModel()


# Client
@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, model: ScriptedModel):
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_llm_client] = model.client

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def _ts(day: int, hour: int) -> datetime:
    return datetime(2025, 1, day, hour, 0, tzinfo=timezone.utc)


# Six samples: three Karnataka sites, one North, two South (one with no KPIs)
@pytest_asyncio.fixture(scope="function")
async def sample_metrics(db_session: AsyncSession):
    rows = [
        models.MetricRecord(
            id="m1", circle="Karnataka", service_type="Jio5G", site_id="KA-001",
            availability_pct=99.2, error_rate_pct=0.5, health_status="GOOD",
            active_users=1200, avg_latency_ms=20.5, kpi_health_score=95.0,
            packet_loss_pct=0.1, throughput_mbps=850.0, kpi_timestamp=_ts(15, 10),
        ),
        models.MetricRecord(
            id="m2", circle="Karnataka", service_type="Jio4G", site_id="KA-002",
            availability_pct=97.5, error_rate_pct=1.2, health_status="WARNING",
            active_users=800, avg_latency_ms=45.0, kpi_health_score=80.0,
            packet_loss_pct=0.8, throughput_mbps=120.0, kpi_timestamp=_ts(15, 11),
        ),
        models.MetricRecord(
            id="m3", circle="Karnataka", service_type="Jio5G", site_id="KA-003",
            availability_pct=99.8, error_rate_pct=0.3, health_status="GOOD",
            active_users=1500, avg_latency_ms=18.0, kpi_health_score=97.0,
            packet_loss_pct=0.05, throughput_mbps=910.0, kpi_timestamp=_ts(16, 10),
        ),
        models.MetricRecord(
            id="m4", circle="North", service_type="Jio5G", site_id="NO-001",
            availability_pct=92.0, error_rate_pct=6.5, health_status="CRITICAL",
            active_users=300, avg_latency_ms=120.0, kpi_health_score=40.0,
            packet_loss_pct=4.2, throughput_mbps=60.0, kpi_timestamp=_ts(15, 10),
        ),
        models.MetricRecord(
            id="m5", circle="South", service_type="Jio4G", site_id="SO-001",
            availability_pct=98.1, error_rate_pct=2.0, health_status="GOOD",
            active_users=950, avg_latency_ms=35.0, kpi_health_score=88.0,
            packet_loss_pct=0.4, throughput_mbps=140.0, kpi_timestamp=_ts(17, 9),
        ),
        models.MetricRecord(
            id="m6", circle="South", service_type="Jio5G", site_id="SO-002",
        ),
    ]
    db_session.add_all(rows)
    await db_session.commit()
    return rows
