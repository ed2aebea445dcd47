# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
import requests

from edu_core.app_context import AppContext
from edu_core.config import AppSettings
from edu_core.models import Upload, UserSession, UserType
from edu_core.offline.blob_store import BlobStore
from edu_core.offline.record_store import RecordStore
from edu_core.ui.notifications import NoticeLevel


REMOTE_BASE_URL = "http://remote.test/api"


# =============================================================================
# HELPER CLASSES
# =============================================================================

class RecordingNotifier:
    """Notifier that keeps every notice for later assertions"""

    def __init__(self):
        self.notices: List[Tuple[str, NoticeLevel]] = []

    def notify(self, message: str, level: NoticeLevel = NoticeLevel.INFO) -> None:
        self.notices.append((message, level))

    @property
    def messages(self) -> List[str]:
        return [message for message, _ in self.notices]


def make_response(status_code: int = 200, payload: Any = None, content: Optional[bytes] = None) -> MagicMock:
    """Build a requests.Response stand-in"""
    response = MagicMock()
    response.status_code = status_code
    if content is None:
        content = json.dumps(payload).encode() if payload is not None else b""
    response.content = content
    if payload is None:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = payload
    return response


class FakeRemote:
    """
    In-memory stand-in for the remote authority.

    Routes map (METHOD, "/path") to a response, an exception to raise, or a
    callable receiving the JSON body.
    """

    def __init__(self, base_url: str = REMOTE_BASE_URL):
        self.base_url = base_url.rstrip("/")
        self.routes: Dict[Tuple[str, str], Any] = {}
        self.calls: List[Tuple[str, str, Any]] = []
        self.offline = False

    def route(self, method: str, path: str, status_code: int = 200, payload: Any = None) -> None:
        self.routes[(method.upper(), path)] = make_response(status_code, payload)

    def serve_catalog(self, **payloads: Any) -> None:
        """Answer the health check and every pulled collection endpoint"""
        self.route("GET", "/health", payload={"status": "ok"})
        for endpoint in ("lessons", "subscriptions", "general-messages", "books", "payment-methods"):
            key = endpoint.replace("-", "_")
            self.route("GET", f"/{endpoint}", payload=payloads.get(key, []))

    def paths(self, method: Optional[str] = None) -> List[str]:
        return [path for m, path, _ in self.calls if method is None or m == method]

    def request(self, method=None, url=None, json=None, timeout=None, **kwargs):
        path = url[len(self.base_url):]
        self.calls.append((method, path, json))
        if self.offline:
            raise requests.exceptions.ConnectionError("Failed to establish a new connection")

        handler = self.routes.get((method, path))
        if handler is None:
            return make_response(404, {"message": f"Route {path} not found"})
        if isinstance(handler, Exception):
            raise handler
        if callable(handler) and not isinstance(handler, MagicMock):
            return handler(json)
        return handler


# =============================================================================
# STORAGE FIXTURES
# =============================================================================

@pytest.fixture
def notifier():
    """Notifier recording every user notice"""
    return RecordingNotifier()


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary data directory"""
    return AppSettings(
        api_base_url=REMOTE_BASE_URL,
        data_dir=tmp_path / "data",
        request_timeout=5.0,
        sync_interval=30.0,
    )


@pytest.fixture
def record_store(settings, notifier):
    """RecordStore on a temporary SQLite file"""
    store = RecordStore(settings.record_db_path, notifier=notifier)
    yield store
    store.close()


@pytest.fixture
def blob_store(settings):
    """BlobStore on a temporary SQLite file (not opened yet)"""
    store = BlobStore(settings.blob_db_path, handle_dir=settings.handle_dir)
    yield store
    asyncio.run(store.close())


# =============================================================================
# REMOTE FIXTURES
# =============================================================================

@pytest.fixture
def fake_remote():
    """Remote authority answering from a route table"""
    return FakeRemote()


@pytest.fixture
def mock_session(fake_remote):
    """requests.Session whose requests are served by fake_remote"""
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = fake_remote.request
    return session


@pytest.fixture
def response_factory():
    """Access to make_response from tests"""
    return make_response


# =============================================================================
# APPLICATION FIXTURES
# =============================================================================

@pytest.fixture
def app_context(settings, notifier, mock_session):
    """AppContext wired to temporary stores and the fake remote"""
    ctx = AppContext(settings, notifier=notifier, session=mock_session)
    yield ctx
    asyncio.run(ctx.blobs.close())
    ctx.records.close()


@pytest.fixture
def teacher():
    return UserSession(id="teacher", name="Teacher", type=UserType.TEACHER)


@pytest.fixture
def student():
    return UserSession(id=1001, name="Sara", type=UserType.STUDENT, extra={"grade": "first"})


@pytest.fixture
def support_user():
    return UserSession(id="support_1", name="Support", type=UserType.SUPPORT)


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def sample_upload():
    """Small PNG-like upload"""
    return Upload(filename="cover.png", data=b"\x89PNG\r\n\x1a\nfake", content_type="image/png")


@pytest.fixture
def exam_questions():
    return [
        {
            "question": "2 + 2 = ?",
            "options": ["3", "4", "5"],
            "correctAnswer": 1,
        }
    ]


@pytest.fixture
def sample_lessons():
    """Lessons as returned by the remote"""
    return [
        {"id": 1, "title": "Algebra", "price": 50, "grade": "first", "isActive": True},
        {"id": 2, "title": "Geometry", "price": 70, "grade": "second", "isActive": True},
    ]
