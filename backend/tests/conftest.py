"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  session-scoped  : rsa_private_key, rsa_private_key_pem, rsa_public_key_pem
  function-scoped : test_settings, db_engine, job_store, fake_ocr,
                    mock_scorer, container, app, async_client

Environment strategy:
  - Every test gets its own SQLite database file under tmp_path (aiosqlite),
    so job-store tests exercise real SQL without a PostgreSQL server.
  - Google Vision and the OAuth token endpoint are never contacted; tests
    use httpx.MockTransport or the fake_ocr fixture.
  - Service-account assertions are signed with a throwaway RSA key.
  - Retry delays are zero so retry paths run instantly.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only (fast, no network)
  pytest -m integration           # API tests through the ASGI app
  pytest tests/unit/test_retry.py # single file
"""

from __future__ import annotations

import io
import os
from typing import AsyncGenerator, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any app imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("DATABASE_URL",          "sqlite+aiosqlite://")
os.environ.setdefault("CELERY_BROKER_URL",     "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("APP_ENV",               "development")
os.environ.setdefault("DEBUG",                 "true")

from cvscreen.auth.service_account import ServiceAccountInfo  # noqa: E402
from cvscreen.core.config import Settings  # noqa: E402
from cvscreen.core.container import ServiceContainer, build_container  # noqa: E402
from cvscreen.db.session import build_engine, build_session_factory, create_tables  # noqa: E402
from cvscreen.llm.scoring import CvScorer  # noqa: E402
from cvscreen.main import create_app  # noqa: E402
from cvscreen.processing.ocr import OcrResult  # noqa: E402
from cvscreen.schemas.analysis import MatchAnalysis  # noqa: E402
from cvscreen.services.job_store import DocumentJobStore  # noqa: E402

TEST_TOKEN_URI    = "https://oauth2.test.example.com/token"
TEST_VISION_URL   = "https://vision.test.example.com/v1/images:annotate"
TEST_CLIENT_EMAIL = "ocr-reader@cv-screening-test.iam.gserviceaccount.com"
TEST_KEY_ID       = "test-key-id-2024"

# 4 lines × 50 chars = 200 chars of native text per page
CV_LINES = (
    "Jane Doe - Senior Backend Engineer - Berlin Germany",
    "Skills: Python FastAPI PostgreSQL Docker Kubernetes",
    "Experience: 8 years building distributed services.",
    "Education: MSc Computer Science, TU Munich in 2015",
)


# ─────────────────────────────────────────────────────────────────────────────
# Document builders
# ─────────────────────────────────────────────────────────────────────────────

def build_pdf(pages: Sequence[str]) -> bytes:
    """PDF with one page per entry; an empty entry gives an image-less blank page."""
    import fitz

    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_text((72, 72), text, fontsize=10)
    data = doc.tobytes()
    doc.close()
    return data


def build_docx(paragraphs: Sequence[str]) -> bytes:
    import docx

    document = docx.Document()
    for para in paragraphs:
        document.add_paragraph(para)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def cv_page_text() -> str:
    return "\n".join(CV_LINES)


# ─────────────────────────────────────────────────────────────────────────────
# RSA key pair for signing service-account assertions (generated once)
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def rsa_private_key():
    """Generate a 2048-bit RSA private key for test assertion signing."""
    return rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )


@pytest.fixture(scope="session")
def rsa_private_key_pem(rsa_private_key) -> bytes:
    """PEM-encoded private key bytes, as found in a service-account JSON key."""
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


@pytest.fixture(scope="session")
def rsa_public_key_pem(rsa_private_key) -> bytes:
    """PEM-encoded public key bytes (used to verify assertions)."""
    return rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@pytest.fixture
def service_account_info(rsa_private_key_pem) -> ServiceAccountInfo:
    return ServiceAccountInfo(
        client_email=TEST_CLIENT_EMAIL,
        private_key=rsa_private_key_pem.decode(),
        private_key_id=TEST_KEY_ID,
        token_uri=TEST_TOKEN_URI,
    )


# ─────────────────────────────────────────────────────────────────────────────
# Settings + database
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """File-backed SQLite per test; zero retry delays; OCR and LLM unconfigured."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cvscreen_test.db'}",
        upload_dir=str(tmp_path / "uploads"),
        retry_max_attempts=3,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        retry_jitter=0.0,
        poll_interval=0.01,
        shutdown_drain_seconds=10.0,
        google_credentials_json="",
        google_credentials_file="",
        openai_api_key="",
        task_backend="inprocess",
    )


@pytest_asyncio.fixture
async def db_engine(test_settings):
    engine = build_engine(test_settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def job_store(db_engine) -> DocumentJobStore:
    return DocumentJobStore(build_session_factory(db_engine))


# ─────────────────────────────────────────────────────────────────────────────
# Sample file bytes
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def native_pdf_bytes() -> bytes:
    """3 pages × 200 chars of real text layer."""
    return build_pdf([cv_page_text()] * 3)


@pytest.fixture
def scanned_pdf_bytes() -> bytes:
    """2 pages with no text layer at all."""
    return build_pdf(["", ""])


@pytest.fixture
def sample_docx_bytes() -> bytes:
    return build_docx(CV_LINES)


@pytest.fixture
def sample_txt_bytes() -> bytes:
    return ("\n".join(CV_LINES) + "\n").encode("utf-8")


@pytest.fixture
def sample_png_bytes() -> bytes:
    """Not decoded by anything; OCR is faked wherever images are used."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


# ─────────────────────────────────────────────────────────────────────────────
# Fake remote services
# ─────────────────────────────────────────────────────────────────────────────

OCR_IMAGE_TEXT = "Jane Doe\nScanned CV image text"


async def _fake_recognize_pages(images, on_retry=None) -> OcrResult:
    texts = [f"OCR page {i + 1}" for i in range(len(images))]
    return OcrResult(
        text="\n\n".join(texts),
        segments=len(images),
        text_detected=bool(texts),
    )


@pytest.fixture
def fake_ocr() -> MagicMock:
    """
    Stands in for GoogleVisionOCR.
    recognize        → fixed image text
    recognize_pages  → "OCR page N" per rendered page
    """
    ocr = MagicMock()
    ocr.recognize = AsyncMock(
        return_value=OcrResult(text=OCR_IMAGE_TEXT, segments=1, text_detected=True),
    )
    ocr.recognize_pages = AsyncMock(side_effect=_fake_recognize_pages)
    return ocr


@pytest.fixture
def mock_scorer() -> MagicMock:
    scorer = MagicMock(spec=CvScorer)
    scorer.score = AsyncMock(return_value=MatchAnalysis(
        match_percentage=85,
        skills_found=["Python", "FastAPI"],
        skills_missing=["Go"],
        experience_summary="8 years of backend development",
        recommendation="Invite to interview",
    ))
    return scorer


# ─────────────────────────────────────────────────────────────────────────────
# Service container + ASGI app
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def container(test_settings, fake_ocr, mock_scorer) -> AsyncGenerator[ServiceContainer, None]:
    services = build_container(test_settings, ocr=fake_ocr, scorer=mock_scorer)
    await create_tables(services.engine)
    yield services
    await services.aclose()


@pytest.fixture
def app(test_settings, container):
    application = create_app(test_settings, container=container)
    # ASGITransport does not run the lifespan
    application.state.container = container
    return application


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client wired to the FastAPI app via ASGI transport.
    No real network calls; the app runs in the same event loop.
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
