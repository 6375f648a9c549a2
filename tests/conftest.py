"""Pytest configuration and shared fixtures."""

import os

# Settings are read at import time
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("GEMINI_API_KEY", "")

import time
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from veridicus.core.config import PolicySettings
from veridicus.database.models import Case, Evidence
from veridicus.main import app
from veridicus.schemas.auth import JWTClaims

TEST_USER_ID = "4d3c2b1a-0000-4000-8000-00000000beef"
AUTH_HEADERS = {"Authorization": "Bearer test-token"}

PDF_BYTES = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj\n<<\n/Type /Catalog\n/Pages 2 0 R\n>>\nendobj\n"


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client.

    The lifespan is not entered, so no database, storage or Gemini client is
    started; tests override the service dependencies they exercise.
    """
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def jwt_claims() -> JWTClaims:
    now = int(time.time())
    return JWTClaims(
        sub=TEST_USER_ID,
        email="investigator@example.com",
        exp=now + 3600,
        iat=now,
        iss="https://test-project.supabase.co/auth/v1",
        aud="authenticated",
    )


@pytest.fixture
def authenticated(jwt_claims: JWTClaims):
    """Make every bearer token verify as ``TEST_USER_ID``."""
    with patch(
        "veridicus.core.jwt.JWTVerifier.verify_token",
        new=AsyncMock(return_value=jwt_claims),
    ) as verify:
        yield verify


@pytest.fixture
def policy() -> PolicySettings:
    return PolicySettings()


@pytest.fixture
def sample_case() -> Case:
    now = datetime.now(timezone.utc)
    case = Case(
        id=uuid.uuid4(),
        name="Harbor warehouse fire",
        description="Insurance fraud inquiry",
        user_id=TEST_USER_ID,
        created_at=now,
        updated_at=now,
    )
    case.evidence = []
    return case


@pytest.fixture
def sample_evidence(sample_case: Case) -> Evidence:
    now = datetime.now(timezone.utc)
    evidence = Evidence(
        id=uuid.uuid4(),
        case_id=sample_case.id,
        file_path=f"{sample_case.id}/1700000000000-abcd1234-statement.pdf",
        file_type="application",
        mime_type="application/pdf",
        file_size=len(PDF_BYTES),
        evidence_metadata={"originalName": "statement.pdf", "processed": False},
        processing_status="pending",
        processing_attempts=0,
        created_at=now,
        updated_at=now,
    )
    evidence.case = sample_case
    return evidence


@pytest.fixture
def sample_pdf_content() -> bytes:
    """Minimal valid PDF header."""
    return PDF_BYTES
