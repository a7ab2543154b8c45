"""
Pytest configuration and fixtures for publisher tests.

Provides shared fixtures for:
- Test database sessions (in-memory SQLite, foreign keys on)
- Local blob store on a temporary directory
- Settings loaded from a controlled environment
- Sample data factories for versions and builds
- FastAPI TestClient with dependency overrides
- Click CliRunner with injected session factory and store
"""

import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ["PUBLISHER_DB_URL"] = "sqlite:///:memory:"
os.environ["PUBLISHER_ENV"] = "test"
os.environ["PUBLISHER_API_KEY"] = ""
os.environ["PUBLISHER_STORAGE_BACKEND"] = "local"

from publisher.src.config.settings import AppSettings
from publisher.src.models import AppVersion, Base, Build
from publisher.src.services.policy import UpdatePolicy, build_metadata_with_policy
from publisher.src.storage import LocalBlobStore


SHA256 = "a" * 64
SHA512 = "b" * 128

BASE_TIME = datetime(2026, 1, 10, 12, 0, 0)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute("pragma foreign_keys=ON")

    event.listen(engine, "connect", _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_session_factory(test_db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture(scope="function")
def test_db_session(test_session_factory):
    """Create a test database session."""
    session = test_session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Storage and Settings Fixtures
# ============================================================================

@pytest.fixture(scope="function")
def test_settings(monkeypatch, tmp_path):
    """Settings with a known app name, package prefix and CDN URL."""
    monkeypatch.setenv("PUBLISHER_APP_NAME", "TestApp")
    monkeypatch.setenv("PUBLISHER_PACKAGE_PREFIX", "app")
    monkeypatch.setenv("PUBLISHER_STORAGE_ROOT", str(tmp_path / "blobs"))
    monkeypatch.setenv("PUBLISHER_CDN_URL", "https://cdn.example.com")
    monkeypatch.setenv("PUBLISHER_API_KEY", "")
    return AppSettings()


@pytest.fixture(scope="function")
def blob_store(tmp_path):
    """Local blob store rooted in the test's temporary directory."""
    return LocalBlobStore(str(tmp_path / "blobs"), base_url="https://cdn.example.com")


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def sample_version(test_db_session):
    """Factory for creating AppVersion rows with both policy homes written."""
    def _create(
        version_name="1.0.0",
        channel="stable",
        published=False,
        mandatory=False,
        min_supported_version=None,
        rollout_percentage=100,
        rollout_start_at=None,
        rollout_end_at=None,
        release_notes=None,
        created_at=None,
    ):
        version = AppVersion(
            version_name=version_name,
            release_channel=channel,
            is_published=published,
            is_mandatory=mandatory,
            min_supported_version=min_supported_version,
            rollout_percentage=rollout_percentage,
            rollout_start_at=rollout_start_at,
            rollout_end_at=rollout_end_at,
            release_notes=release_notes,
            storage_key_prefix=AppVersion.storage_prefix_for(channel, version_name),
            release_date=BASE_TIME,
            created_at=created_at or BASE_TIME,
        )
        version.metadata_json = build_metadata_with_policy(
            {},
            UpdatePolicy(
                channel=channel,
                min_supported_version=min_supported_version,
                rollout_percentage=rollout_percentage,
            ),
        )
        test_db_session.add(version)
        test_db_session.commit()
        test_db_session.refresh(version)
        return version
    return _create


@pytest.fixture
def sample_build(test_db_session):
    """Factory for creating Build rows owned by a version."""
    def _create(
        version,
        os="macos",
        arch="arm64",
        build_type="installer",
        distribution="direct",
        variant="default",
        package_name=None,
        url=None,
        size=1024,
        metadata=None,
        created_at=None,
        minutes=0,
    ):
        package_name = package_name or f"app-{version.version_name}-{arch}-{os}.pkg"
        build = Build(
            version_id=version.id,
            os=os,
            arch=arch,
            type=build_type,
            distribution=distribution,
            variant=variant,
            package_name=package_name,
            url=url or f"https://cdn.example.com/{version.storage_key_prefix}/{os}/{arch}/{package_name}",
            size=size,
            sha256_checksum=SHA256,
            sha512_checksum=SHA512,
            platform_metadata_json=metadata or {},
            created_at=created_at or (BASE_TIME + timedelta(minutes=minutes)),
        )
        test_db_session.add(build)
        test_db_session.commit()
        test_db_session.refresh(build)
        return build
    return _create


@pytest.fixture
def package_file(tmp_path):
    """Factory writing a package file named like a real build artifact."""
    def _create(name="app-1.0.0-arm64-macos.dmg", content=b"installer-bytes"):
        path = tmp_path / "dist" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path
    return _create


# ============================================================================
# Outer Surface Fixtures
# ============================================================================

@pytest.fixture
def test_client(test_session_factory, blob_store, test_settings):
    """FastAPI TestClient bound to the test database, store and settings."""
    from fastapi.testclient import TestClient

    from publisher.src.api.deps import get_app_settings, get_store
    from publisher.src.db.database import get_db
    from publisher.src.main import app

    def _get_db():
        db = test_session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_store] = lambda: blob_store
    app.dependency_overrides[get_app_settings] = lambda: test_settings

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def cli_runner():
    from click.testing import CliRunner
    return CliRunner()


@pytest.fixture
def cli_obj(test_session_factory, blob_store, test_settings):
    """Context object injected into CLI invocations."""
    return {
        "session_factory": test_session_factory,
        "store": blob_store,
        "settings": test_settings,
    }
