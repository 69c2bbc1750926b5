"""Shared fixtures for the scheduled publisher test suite."""

import urllib.parse
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

from scheduled_publisher.config import Settings, reset_settings
from scheduled_publisher.exceptions import CasFailed, DatabaseError
from scheduled_publisher.publishing.orchestrator import PublishOrchestrator
from scheduled_publisher.security.credentials import CredentialService
from scheduled_publisher.tools.graph_client import GraphAPIClient
from scheduled_publisher.utils import parse_datetime, utc_now

TEST_ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
ORG_ID = "org-1"
ACCOUNT_ID = "17841400000000001"
ACCESS_TOKEN = "IGQVJ-test-token"


# ---------------------------------------------------------------------------
# Ensure we don't hit real services during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear credentials and overrides so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "TOKEN_ENCRYPTION_KEY",
        "GRAPH_API_BASE_URL",
        "GRAPH_API_VERSION",
        "POLL_INTERVAL_SECONDS",
        "POLL_TIMEOUT_SECONDS",
        "STEP_MAX_ATTEMPTS",
        "DISPATCHER_CHECK_INTERVAL_SECONDS",
        "LOG_LEVEL",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client whose query chain returns itself."""
    client = MagicMock()
    table_mock = MagicMock()
    for method in ("select", "insert", "upsert", "update", "delete",
                   "eq", "in_", "gte", "lte", "order", "limit"):
        getattr(table_mock, method).return_value = table_mock

    table_mock.result = MagicMock(data=[], count=0)

    async def mock_execute():
        return table_mock.result

    table_mock.execute = mock_execute
    client.table.return_value = table_mock
    return client


# ---------------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------------
class FakeDB:
    """In-memory stand-in for :class:`SupabaseDB` with the same semantics."""

    def __init__(self) -> None:
        self.posts: Dict[str, Dict[str, Any]] = {}
        self.channels: List[Dict[str, Any]] = []
        self.steps: Dict[tuple, Dict[str, Any]] = {}
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.post_updates: List[tuple] = []

    # posts
    async def get_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        row = self.posts.get(post_id)
        return dict(row) if row else None

    async def update_post(self, post_id, fields, expected_status=None):
        row = self.posts.get(post_id)
        if row is None or (
            expected_status is not None and row["status"] != expected_status
        ):
            raise CasFailed(post_id, expected_status)
        row.update(fields)
        self.post_updates.append((post_id, dict(fields)))
        return dict(row)

    # channels
    async def get_active_channel(self, organization_id, provider):
        for row in self.channels:
            if (
                row["organization_id"] == organization_id
                and row["provider"] == provider
                and row.get("is_active")
            ):
                return dict(row)
        return None

    # step checkpoints
    async def get_step_result(self, job_key, step_name):
        return self.steps.get((job_key, step_name))

    async def save_step_result(self, job_key, step_name, value):
        self.steps[(job_key, step_name)] = {
            "job_key": job_key,
            "step_name": step_name,
            "result": value,
            "completed_at": utc_now().isoformat(),
        }

    async def claim_step(self, job_key, step_name, value):
        if (job_key, step_name) in self.steps:
            return False
        await self.save_step_result(job_key, step_name, value)
        return True

    async def delete_step_results(self, job_key, step_names):
        for name in step_names:
            self.steps.pop((job_key, name), None)

    # publish jobs
    async def insert_publish_job(self, job):
        if job["id"] in self.jobs:
            return False
        self.jobs[job["id"]] = dict(job)
        return True

    async def get_due_publish_jobs(self, now, limit=20):
        due = [
            row for row in self.jobs.values()
            if row["status"] == "pending" and parse_datetime(row["fire_at"]) <= now
        ]
        due.sort(key=lambda row: row["fire_at"])
        return [dict(row) for row in due[:limit]]

    async def claim_publish_job(self, job_id):
        row = self.jobs.get(job_id)
        if row is None or row["status"] != "pending":
            return False
        row.update(status="claimed", claimed_at=utc_now().isoformat())
        return True

    async def update_publish_job(self, job_id, fields):
        if job_id not in self.jobs:
            raise DatabaseError(f"Publish job {job_id} not found")
        self.jobs[job_id].update(fields)

    async def get_stuck_publish_jobs(self, cutoff):
        return [
            dict(row) for row in self.jobs.values()
            if row["status"] == "claimed"
            and parse_datetime(row["claimed_at"]) <= cutoff
        ]


# ---------------------------------------------------------------------------
# Fake Graph API
# ---------------------------------------------------------------------------
class FakeGraphAPI:
    """Scriptable Graph API served through ``httpx.MockTransport``.

    Attributes:
        requests: Every request seen, as dicts of method/path/params/data.
        created: ``(container_id, form_data)`` for each created container.
        published: Container ids passed to ``media_publish``.
        statuses: Per-container list of ``status_code`` values returned in
            order; the last value repeats.  Unlisted containers are
            ``FINISHED``.
        failures: Per-endpoint (``"media"``, ``"media_publish"``,
            ``"status"``) list of responses returned before normal handling.
        rejected_urls: Media URLs answered with a 400 media error.
        on_publish: Optional callback run when a publish succeeds.
        on_create: Optional callback run when a container is created.
    """

    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []
        self.created: List[tuple] = []
        self.published: List[str] = []
        self.statuses: Dict[str, List[str]] = {}
        self.failures: Dict[str, List[httpx.Response]] = {}
        self.rejected_urls: set = set()
        self.on_publish = None
        self.on_create = None

    def fail(self, endpoint: str, status_code: int = 500, **error: Any) -> None:
        """Queue one error response for *endpoint*."""
        body = {"error": {"message": "Simulated failure", **error}}
        self.failures.setdefault(endpoint, []).append(
            httpx.Response(status_code, json=body)
        )

    def requests_to(self, endpoint: str) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r["endpoint"] == endpoint]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.strip("/")
        data = {}
        if request.method == "POST":
            data = dict(urllib.parse.parse_qsl(request.content.decode("utf-8"), keep_blank_values=True))

        if request.method == "GET":
            endpoint = "status"
        elif path.endswith("/media_publish"):
            endpoint = "media_publish"
        else:
            endpoint = "media"

        self.requests.append({
            "method": request.method,
            "path": path,
            "endpoint": endpoint,
            "params": dict(request.url.params),
            "data": data,
        })

        queued = self.failures.get(endpoint)
        if queued:
            return queued.pop(0)

        if endpoint == "status":
            container_id = path.split("/")[-1]
            sequence = self.statuses.get(container_id)
            if not sequence:
                status = "FINISHED"
            elif len(sequence) > 1:
                status = sequence.pop(0)
            else:
                status = sequence[0]
            return httpx.Response(
                200, json={"id": container_id, "status_code": status, "status": status}
            )

        if endpoint == "media_publish":
            container_id = data["creation_id"]
            self.published.append(container_id)
            if self.on_publish:
                self.on_publish(container_id)
            return httpx.Response(200, json={"id": f"ig-media-{len(self.published)}"})

        url = data.get("image_url") or data.get("video_url")
        if url in self.rejected_urls:
            return httpx.Response(
                400,
                json={"error": {"message": "Media download has failed", "code": 9004}},
            )
        container_id = f"c{len(self.created) + 1}"
        self.created.append((container_id, data))
        if self.on_create:
            self.on_create(container_id)
        return httpx.Response(200, json={"id": container_id})


# ---------------------------------------------------------------------------
# Wiring fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def settings():
    """Settings with near-instant polling and retry backoff."""
    return Settings(
        graph_api_base_url="https://graph.test",
        poll_interval_seconds=0.001,
        poll_timeout_seconds=0.005,
        step_max_attempts=3,
        step_base_delay_seconds=0,
        dispatcher_check_interval_seconds=0,
    )


@pytest.fixture
def fake_db():
    return FakeDB()


@pytest.fixture
def fake_graph():
    return FakeGraphAPI()


@pytest_asyncio.fixture
async def graph_client(settings, fake_graph):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_graph.handler))
    yield GraphAPIClient(settings, http_client=http_client)
    await http_client.aclose()


@pytest.fixture
def credentials():
    return CredentialService(TEST_ENCRYPTION_KEY)


@pytest.fixture
def orchestrator(fake_db, credentials, graph_client, settings):
    return PublishOrchestrator(fake_db, credentials, graph=graph_client, settings=settings)


@pytest.fixture
def scheduled_at():
    """A fire time one hour in the past (the delivery is due)."""
    return (utc_now() - timedelta(hours=1)).replace(microsecond=0)


def make_post_row(
    post_id: str = "post-1",
    media: Optional[List[Dict[str, str]]] = None,
    status: str = "ready",
    scheduled_date: Optional[datetime] = None,
    caption: str = "Hello from the test suite",
    organization_id: str = ORG_ID,
) -> Dict[str, Any]:
    """Build a ``posts`` row."""
    if media is None:
        media = [{"type": "image", "url": "https://cdn.test/a.jpg"}]
    return {
        "id": post_id,
        "organization_id": organization_id,
        "content": caption,
        "media": media,
        "status": status,
        "scheduled_date": scheduled_date.isoformat() if scheduled_date else None,
        "published_content_id": None,
        "created_at": "2025-06-01T10:00:00+00:00",
        "updated_at": "2025-06-01T10:00:00+00:00",
        "published_at": None,
    }


def make_channel_row(
    credentials: CredentialService,
    token: str = ACCESS_TOKEN,
    expires_in: Optional[timedelta] = timedelta(days=30),
    is_active: bool = True,
    organization_id: str = ORG_ID,
) -> Dict[str, Any]:
    """Build a ``channels`` row with an encrypted token."""
    expires_at = utc_now() + expires_in if expires_in is not None else None
    return {
        "id": "channel-1",
        "organization_id": organization_id,
        "provider": "instagram",
        "provider_account_id": ACCOUNT_ID,
        "access_token": credentials.encrypt(token),
        "token_expires_at": expires_at.isoformat() if expires_at else None,
        "is_active": is_active,
        "account_name": "test.account",
    }


@pytest.fixture
def post_row():
    """Factory fixture for ``posts`` rows (see :func:`make_post_row`)."""
    return make_post_row


@pytest.fixture
def channel_row(credentials):
    """Factory fixture for ``channels`` rows encrypted with the test key."""

    def _make(**kwargs):
        return make_channel_row(credentials, **kwargs)

    return _make
