import os
import tempfile

# Point the app at throwaway locations before anything imports converter.config
_TMP_ROOT = tempfile.mkdtemp(prefix="converter-tests-")
os.environ.setdefault("DATABASE_PATH", os.path.join(_TMP_ROOT, "app.db"))
os.environ.setdefault("STORAGE_DIR", os.path.join(_TMP_ROOT, "storage"))
os.environ.setdefault("PUBLIC_BASE_URL", "http://testserver")

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from converter.database import Base
from converter.models import job as job_model  # noqa: F401
from converter.models.schemas import ConversionSettings
from converter.services.job_state import JobStatus
from converter.services.job_store import JobStore
from converter.services.reconciler import Reconciler
from converter.services.storage_service import StorageService
from fakes import FakeEngine


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def storage(tmp_path):
    return StorageService(root=str(tmp_path / "storage"), public_base_url="http://testserver")


@pytest.fixture
def fake_engine():
    return FakeEngine()


@pytest.fixture
def make_reconciler(store, storage):
    """Build a reconciler with millisecond timers."""
    def _make(engine, **overrides):
        options = dict(
            dense_interval=0.001,
            sparse_interval=0.002,
            dense_window=0.01,
            max_wait=1.0,
            progress_ceiling=85.0,
            poll_step=5.0,
            nudge_interval=0.005,
            nudge_step=10.0,
        )
        options.update(overrides)
        return Reconciler(store=store, storage=storage, engine=engine, **options)
    return _make


@pytest.fixture
def converting_job(store):
    """Create a job that has already been accepted by the engine."""
    async def _make(output_format="mp4", settings=None):
        job = await store.create(
            input_filename="clip.mov",
            output_format=output_format,
            settings=settings or ConversionSettings(),
            input_format="mov",
        )
        await store.transition(job.id, JobStatus.CONVERTING)
        await store.advance_progress(job.id, 40)
        return await store.get(job.id)
    return _make
