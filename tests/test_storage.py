import asyncio
import os
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from pydantic import ValidationError as SettingsError

from apps.storage.schema import BlobMetadata, StorageConfig
from apps.storage.services import (
    DISK_UPLOAD_PURPOSE,
    LocalStorage,
    S3HTTPStorage,
    compute_checksum,
    pick_storage,
)
from config.settings import Settings
from utils.exceptions import StoreUnavailableError
from utils.jwt import verify_jwt_token


def test_compute_checksum_is_base64_md5():
    assert compute_checksum(b'hello') == 'XUFAKrxLKna5cZ2REBfFkg=='


def test_local_storage_put_get(tmp_path):
    storage = LocalStorage(str(tmp_path))
    data = b'hello world'
    key = asyncio.run(storage.put(data, BlobMetadata(filename='hello.txt', byte_size=len(data))))
    assert asyncio.run(storage.get(key)) == data


def test_local_put_issues_fresh_namespaced_keys(tmp_path):
    storage = LocalStorage(str(tmp_path), namespace='test')
    first = asyncio.run(storage.put(b'same bytes'))
    second = asyncio.run(storage.put(b'same bytes'))
    assert first != second
    assert first.startswith('test/') and second.startswith('test/')
    assert os.path.exists(os.path.join(str(tmp_path), first))


def test_local_get_missing_returns_none(tmp_path):
    storage = LocalStorage(str(tmp_path))
    assert asyncio.run(storage.get('nope')) is None
    assert asyncio.run(storage.exists('nope')) is False


def test_local_delete_is_idempotent(tmp_path):
    storage = LocalStorage(str(tmp_path))
    key = asyncio.run(storage.put(b'bytes'))
    asyncio.run(storage.delete(key))
    assert asyncio.run(storage.exists(key)) is False
    # deleting again is not an error
    asyncio.run(storage.delete(key))


def test_local_rejects_keys_outside_base_path(tmp_path):
    storage = LocalStorage(str(tmp_path / 'root'))
    with pytest.raises(ValueError):
        asyncio.run(storage.upload('../escape', b'x'))
    with pytest.raises(ValueError):
        storage.url_for('')


def test_local_url_for_is_file_path(tmp_path):
    storage = LocalStorage(str(tmp_path))
    key = asyncio.run(storage.put(b'bytes'))
    path = storage.url_for(key)
    assert os.path.isabs(path)
    with open(path, 'rb') as f:
        assert f.read() == b'bytes'


def test_local_direct_upload_target_points_at_app(tmp_path):
    storage = LocalStorage(str(tmp_path), public_base_url='http://blog.local/')
    target = storage.direct_upload_target('k/1', 'image/png', 12, 'abc==')
    assert target.url.startswith('http://blog.local/api/v1/direct_uploads/disk/')
    assert target.headers == {'Content-Type': 'image/png'}

    token = target.url.rsplit('/', 1)[1]
    claims = verify_jwt_token(token, DISK_UPLOAD_PURPOSE)
    assert claims['key'] == 'k/1'
    assert claims['byte_size'] == 12
    assert claims['checksum'] == 'abc=='
    assert verify_jwt_token(token, 'blob_id') is None


class DummyResponse:
    def __init__(self, status_code=200, content=b'', text=''):
        self.status_code = status_code
        self.content = content
        self.text = text


class DummyClient:
    # Shared store across instances so separate context managers see the same data
    _shared_store = {}
    calls = []

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def put(self, url, content=None, headers=None):
        DummyClient.calls.append(('PUT', url, headers))
        DummyClient._shared_store[url] = content
        return DummyResponse(status_code=200, content=b'', text='OK')

    async def get(self, url, headers=None):
        DummyClient.calls.append(('GET', url, headers))
        if url not in DummyClient._shared_store:
            return DummyResponse(status_code=404, content=b'', text='Not Found')
        return DummyResponse(status_code=200, content=DummyClient._shared_store[url], text='OK')

    async def head(self, url, headers=None):
        DummyClient.calls.append(('HEAD', url, headers))
        return DummyResponse(status_code=200 if url in DummyClient._shared_store else 404)

    async def delete(self, url, headers=None):
        DummyClient.calls.append(('DELETE', url, headers))
        DummyClient._shared_store.pop(url, None)
        return DummyResponse(status_code=204)


class BrokenClient(DummyClient):
    async def put(self, url, content=None, headers=None):
        raise httpx.ConnectError('connection refused')

    async def delete(self, url, headers=None):
        return DummyResponse(status_code=503, text='Slow Down')


@pytest.fixture
def s3(monkeypatch):
    DummyClient._shared_store = {}
    DummyClient.calls = []
    monkeypatch.setattr('apps.storage.services.httpx.AsyncClient', DummyClient)
    return S3HTTPStorage(endpoint='https://s3.eu-west-2.amazonaws.com', bucket='b', access_key='a',
                         secret_key='s', namespace='test')


def test_s3_http_storage_put_get_delete(s3):
    data = b'hello-s3'
    key = asyncio.run(s3.put(data, BlobMetadata(filename='a.txt', content_type='text/plain', byte_size=8)))
    assert key.startswith('test/')
    assert asyncio.run(s3.get(key)) == data
    assert asyncio.run(s3.exists(key)) is True

    method, url, headers = DummyClient.calls[0]
    assert (method, url) == ('PUT', f'https://s3.eu-west-2.amazonaws.com/b/{key}')
    assert headers['Content-Type'] == 'text/plain'
    assert headers['Authorization'].startswith('AWS4-HMAC-SHA256 Credential=a/')
    assert '/eu-west-2/s3/aws4_request' in headers['Authorization']

    asyncio.run(s3.delete(key))
    assert asyncio.run(s3.get(key)) is None
    # missing keys delete cleanly
    asyncio.run(s3.delete(key))


def test_s3_failures_raise_store_unavailable(monkeypatch):
    monkeypatch.setattr('apps.storage.services.httpx.AsyncClient', BrokenClient)
    s3 = S3HTTPStorage(endpoint='https://minio.local', bucket='b', access_key='a', secret_key='s')
    with pytest.raises(StoreUnavailableError):
        asyncio.run(s3.put(b'data'))
    with pytest.raises(StoreUnavailableError):
        asyncio.run(s3.delete('some/key'))


def test_s3_region_detection_defaults():
    aws = S3HTTPStorage(endpoint='https://s3.eu-west-2.amazonaws.com', bucket='b', access_key='', secret_key='')
    minio = S3HTTPStorage(endpoint='http://localhost:9000', bucket='b', access_key='', secret_key='')
    assert aws.region == 'eu-west-2'
    assert minio.region == 'us-east-1'


def test_s3_url_for_is_presigned_get(s3):
    url = s3.url_for('test/abc', filename='cat.png', content_type='image/png')
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.path == '/b/test/abc'
    assert query['X-Amz-Algorithm'] == ['AWS4-HMAC-SHA256']
    assert query['X-Amz-Expires'] == ['300']
    assert query['X-Amz-SignedHeaders'] == ['host']
    assert query['response-content-type'] == ['image/png']
    assert query['response-content-disposition'] == ['inline; filename="cat.png"']
    assert len(query['X-Amz-Signature'][0]) == 64


def test_s3_direct_upload_target_signs_upload_headers(s3):
    target = s3.direct_upload_target('test/abc', 'image/png', 10, 'XUFAKrxLKna5cZ2REBfFkg==')
    query = parse_qs(urlparse(target.url).query)
    assert target.headers == {'Content-Type': 'image/png', 'Content-MD5': 'XUFAKrxLKna5cZ2REBfFkg=='}
    assert query['X-Amz-SignedHeaders'] == ['content-md5;content-type;host']
    assert query['X-Amz-Expires'] == ['600']


def test_virtual_host_urls():
    s3 = S3HTTPStorage(endpoint='https://s3.amazonaws.com', bucket='photos', access_key='a', secret_key='s',
                       virtual_host=True)
    url, path = s3._make_url_and_path('k1')
    assert url == 'https://photos.s3.amazonaws.com/k1'
    assert path == '/k1'
    assert s3.host == 'photos.s3.amazonaws.com'


def test_pick_storage_from_config(tmp_path):
    local = pick_storage(StorageConfig(backend='local', local_path=str(tmp_path), namespace='dev'))
    assert isinstance(local, LocalStorage)
    assert local.namespace == 'dev'

    s3 = pick_storage(StorageConfig(backend='S3', s3_endpoint='https://minio.local', s3_bucket='b',
                                    s3_region='eu-west-2', s3_verify_ssl=False))
    assert isinstance(s3, S3HTTPStorage)
    assert s3.region == 'eu-west-2'
    assert s3.verify_ssl is False

    with pytest.raises(ValueError):
        pick_storage(StorageConfig(backend='ftp'))


def test_settings_parse_typed_environment(monkeypatch):
    monkeypatch.setenv('S3_VIRTUAL_HOST', 'true')
    monkeypatch.setenv('S3_VERIFY_SSL', '0')
    monkeypatch.setenv('SIGNED_URL_EXPIRES_IN', '120')
    settings = Settings(_env_file=None)
    assert settings.S3_VIRTUAL_HOST is True
    assert settings.S3_VERIFY_SSL is False
    assert settings.SIGNED_URL_EXPIRES_IN == 120

    monkeypatch.setenv('CLEANUP_GRACE_SECONDS', 'soon')
    with pytest.raises(SettingsError):
        Settings(_env_file=None)
