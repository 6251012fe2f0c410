import asyncio
import os
import shutil
import tempfile

import pytest

# Environment defaults must exist before app modules are imported during collection:
# config.settings reads them at import time.
_TEST_ROOT = tempfile.mkdtemp(prefix='blog-service-tests-')
os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('DATABASE_URL', f"sqlite://{os.path.join(_TEST_ROOT, 'test_db.sqlite3')}")
os.environ.setdefault('STORAGE_BACKEND', 'local')
os.environ.setdefault('LOCAL_STORAGE_PATH', os.path.join(_TEST_ROOT, 'storage'))
os.environ.setdefault('SECRET_KEY', 'test-secret-key')

# Provide S3 env defaults (if tests or code reference them)
os.environ.setdefault('S3_ENDPOINT', '')
os.environ.setdefault('S3_BUCKET', '')
os.environ.setdefault('S3_ACCESS_KEY', '')
os.environ.setdefault('S3_SECRET_KEY', '')

from apps.storage.services import LocalStorage  # noqa: E402
from config.db import close_db, init_db  # noqa: E402
from utils.exceptions import StoreUnavailableError  # noqa: E402


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


class RecordingStorage:
    """Delegates to a real storage, recording deletes and failing the chosen keys."""

    def __init__(self, inner, fail_delete_keys=(), fail_writes=False):
        self.inner = inner
        self.fail_delete_keys = set(fail_delete_keys)
        self.fail_writes = fail_writes
        self.deleted = []

    def __getattr__(self, name):
        return getattr(self.inner, name)

    async def put(self, data, metadata=None):
        if self.fail_writes:
            raise StoreUnavailableError('storage unreachable')
        return await self.inner.put(data, metadata)

    async def upload(self, key, data, content_type=None):
        if self.fail_writes:
            raise StoreUnavailableError('storage unreachable')
        await self.inner.upload(key, data, content_type)

    async def delete(self, key):
        self.deleted.append(key)
        if key in self.fail_delete_keys:
            raise StoreUnavailableError(f'cannot reach storage to delete {key}')
        await self.inner.delete(key)


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(str(tmp_path / 'storage'), namespace='test', public_base_url='http://testserver')


@pytest.fixture
def recording_storage(storage):
    return RecordingStorage(storage)


@pytest.fixture
def run_db():
    """Run a coroutine function against a fresh in-memory database."""

    def _run(fn, *args, **kwargs):
        async def _wrapped():
            await init_db('sqlite://:memory:')
            try:
                return await fn(*args, **kwargs)
            finally:
                await close_db()

        return asyncio.run(_wrapped())

    return _run
