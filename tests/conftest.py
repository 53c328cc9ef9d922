import os
import shutil
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["AUTO_CREATE_TABLES"] = "true"
os.environ["ENCRYPTION_KEY"] = "aLxM0wHk0w0oVx3G9iYfn7lr5J2v3xH5cM8D6lQ1t2Q="
os.environ["OPENAI_API_KEY"] = "test-key"
os.environ["REDIS_URL"] = ""
os.environ["UPLOAD_DIR"] = "test_uploads"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "false"
os.environ["EXTERNAL_RETRY_DELAY_MS"] = "1"

from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.main import create_app
from app.services.jobs import tracking


@pytest.fixture(autouse=True)
def enqueued(monkeypatch):
    """Record enqueued job ids instead of talking to a broker."""
    calls: list[str] = []
    monkeypatch.setattr("app.workers.tasks.enqueue_audio_job", calls.append)
    return calls


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    path = Path("test.db")
    if path.exists():
        path.unlink()
    shutil.rmtree("test_uploads", ignore_errors=True)


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_job(db, tmp_path):
    def _make(suffix: str = ".mp3", **overrides):
        source = tmp_path / f"interview{suffix}"
        source.write_bytes(b"audio")
        params = {
            "file_id": "file-1",
            "user_id": "user-1",
            "company_id": "company-1",
            "staff_id": "staff-1",
            "local_file_path": str(source),
        }
        params.update(overrides)
        return tracking.create_processing_job(db, **params)

    return _make


@pytest.fixture()
def client():
    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
