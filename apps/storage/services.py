import base64
import hashlib
import hmac
import logging
import os
import re
import secrets
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol
from urllib.parse import quote, urlparse

import httpx

from apps.storage.schema import BlobMetadata, DirectUploadTarget, StorageConfig
from config import settings
from utils.exceptions import StoreUnavailableError
from utils.jwt import generate_jwt_token

logger = logging.getLogger(__name__)

DISK_UPLOAD_PURPOSE = 'disk_upload'


def generate_key(namespace: str = '') -> str:
    """Fresh random key; never derived from content so two uploads never share bytes."""
    token = secrets.token_hex(16)
    return f'{namespace}/{token}' if namespace else token


def compute_checksum(data: bytes) -> str:
    """Base64 MD5, the same encoding S3 expects in a Content-MD5 header."""
    return base64.b64encode(hashlib.md5(data).digest()).decode('ascii')


class StorageInterface(Protocol):
    service_name: str

    async def put(self, data: bytes, metadata: Optional[BlobMetadata] = None) -> str:
        ...

    async def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        ...

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def exists(self, key: str) -> bool:
        ...

    async def delete(self, key: str) -> None:
        ...

    def generate_key(self) -> str:
        ...

    def url_for(self, key: str, filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
        ...

    def direct_upload_target(self, key: str, content_type: Optional[str], byte_size: int,
                             checksum: Optional[str]) -> DirectUploadTarget:
        ...


class LocalStorage:
    service_name = 'local'

    def __init__(self, base_path: str, namespace: str = '', public_base_url: str = '',
                 upload_expires_in: int = 600):
        self.base_path = os.path.abspath(base_path)
        self.namespace = namespace
        self.public_base_url = public_base_url.rstrip('/')
        self.upload_expires_in = upload_expires_in
        os.makedirs(self.base_path, exist_ok=True)

    def _path_for(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.base_path, key))
        if path == self.base_path or os.path.commonpath([path, self.base_path]) != self.base_path:
            raise ValueError(f'Invalid storage key: {key!r}')
        return path

    def generate_key(self) -> str:
        return generate_key(self.namespace)

    async def put(self, data: bytes, metadata: Optional[BlobMetadata] = None) -> str:
        key = self.generate_key()
        await self.upload(key, data, metadata.content_type if metadata else None)
        return key

    async def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        path = self._path_for(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, 'wb') as f:
                f.write(data)
        except OSError as e:
            raise StoreUnavailableError(f'Local write failed for {key}: {e}') from e

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        if not os.path.exists(path):
            return None
        with open(path, 'rb') as f:
            return f.read()

    async def exists(self, key: str) -> bool:
        return os.path.exists(self._path_for(key))

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StoreUnavailableError(f'Local delete failed for {key}: {e}') from e

    def url_for(self, key: str, filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
        return self._path_for(key)

    def direct_upload_target(self, key: str, content_type: Optional[str], byte_size: int,
                             checksum: Optional[str]) -> DirectUploadTarget:
        """Point the client back at this app, which writes the bytes on its behalf."""
        token = generate_jwt_token(
            {'key': key, 'content_type': content_type, 'byte_size': byte_size, 'checksum': checksum},
            purpose=DISK_UPLOAD_PURPOSE,
            expires_in=self.upload_expires_in,
        )
        return DirectUploadTarget(
            url=f'{self.public_base_url}/api/v1/direct_uploads/disk/{token}',
            headers={'Content-Type': content_type or 'application/octet-stream'},
        )


class S3HTTPStorage:
    service_name = 's3'

    def __init__(
        self,
        endpoint: str,
        bucket: str,
        access_key: str,
        secret_key: str,
        region: str | None = None,
        virtual_host: bool = False,
        namespace: str = '',
        verify_ssl: bool = True,
        url_expires_in: int = 300,
        upload_expires_in: int = 600,
    ):
        self.endpoint = endpoint.rstrip('/')
        self.bucket = bucket
        self.access_key = access_key
        self.secret_key = secret_key
        self.service = "s3"
        self.virtual_host = virtual_host
        self.namespace = namespace
        self.verify_ssl = verify_ssl
        self.url_expires_in = url_expires_in
        self.upload_expires_in = upload_expires_in

        parsed = urlparse(self.endpoint)
        self.host = parsed.netloc
        if self.virtual_host:
            self.host = f'{self.bucket}.{self.host}'
        self.region = region or self._extract_region(self.endpoint)

    def _extract_region(self, endpoint: str) -> str:
        """Auto-detect region from endpoint URL"""
        patterns = [
            r's3[.-]([a-z0-9-]+)\.amazonaws\.com',
            r'([a-z0-9-]+)\.digitaloceanspaces\.com',
            r'([a-z0-9-]+)\.linodeobjects\.com',
            r's3\.([a-z0-9-]+)\.backblazeb2\.com',
            r's3\.([a-z0-9-]+)\.wasabisys\.com',
        ]
        for p in patterns:
            match = re.search(p, endpoint)
            if match:
                return match.group(1)

        # MinIO and generic S3 services commonly use "us-east-1"
        return "us-east-1"

    def _sign(self, key: bytes, msg: str) -> bytes:
        return hmac.new(key, msg.encode('utf-8'), hashlib.sha256).digest()

    def _get_signature_key(self, date_stamp: str) -> bytes:
        k_date = self._sign(f"AWS4{self.secret_key}".encode('utf-8'), date_stamp)
        k_region = self._sign(k_date, self.region)
        k_service = self._sign(k_region, self.service)
        return self._sign(k_service, 'aws4_request')

    def _signature(self, date_stamp: str, amz_date: str, canonical_request: str) -> str:
        string_to_sign = (
            f"AWS4-HMAC-SHA256\n"
            f"{amz_date}\n"
            f"{date_stamp}/{self.region}/s3/aws4_request\n"
            f"{hashlib.sha256(canonical_request.encode()).hexdigest()}"
        )
        return hmac.new(
            self._get_signature_key(date_stamp),
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _make_url_and_path(self, key: str):
        """
        Supports both:
            - path-style:       https://endpoint/bucket/key
            - virtual-host:     https://bucket.endpoint/key
        """
        if self.virtual_host:
            url = f"{self.endpoint.replace('//', f'//{self.bucket}.')}/{key}"
            path = f"/{key}"
        else:
            url = f"{self.endpoint}/{self.bucket}/{key}"
            path = f"/{self.bucket}/{key}"

        return url, path

    def _auth_headers(self, method: str, path: str, payload: bytes = b'') -> dict:
        if not self.access_key or not self.secret_key:
            return {}

        now = datetime.now(timezone.utc)
        amz_date = now.strftime('%Y%m%dT%H%M%SZ')
        date_stamp = now.strftime('%Y%m%d')

        payload_hash = hashlib.sha256(payload).hexdigest()

        canonical_headers = (
            f'host:{self.host}\n'
            f'x-amz-content-sha256:{payload_hash}\n'
            f'x-amz-date:{amz_date}\n'
        )

        signed_headers = "host;x-amz-content-sha256;x-amz-date"

        canonical_request = (
            f"{method}\n"
            f"{path}\n"
            f""  # no query string
            f"\n{canonical_headers}\n"
            f"{signed_headers}\n"
            f"{payload_hash}"
        )

        signature = self._signature(date_stamp, amz_date, canonical_request)

        auth = (
            f"AWS4-HMAC-SHA256 "
            f"Credential={self.access_key}/{date_stamp}/{self.region}/s3/aws4_request, "
            f"SignedHeaders={signed_headers}, "
            f"Signature={signature}"
        )

        return {
            "Authorization": auth,
            "x-amz-date": amz_date,
            "x-amz-content-sha256": payload_hash,
        }

    def presign(self, method: str, key: str, expires_in: int,
                headers: Optional[Dict[str, str]] = None,
                params: Optional[Dict[str, str]] = None) -> str:
        """Query-string signed URL; ``headers`` must be sent verbatim by whoever uses it."""
        now = datetime.now(timezone.utc)
        amz_date = now.strftime('%Y%m%dT%H%M%SZ')
        date_stamp = now.strftime('%Y%m%d')
        url, path = self._make_url_and_path(key)

        signed = {'host': self.host}
        signed.update({name.lower(): value.strip() for name, value in (headers or {}).items()})
        signed_headers = ';'.join(sorted(signed))
        canonical_headers = ''.join(f'{name}:{signed[name]}\n' for name in sorted(signed))

        query = dict(params or {})
        query.update({
            'X-Amz-Algorithm': 'AWS4-HMAC-SHA256',
            'X-Amz-Credential': f'{self.access_key}/{date_stamp}/{self.region}/s3/aws4_request',
            'X-Amz-Date': amz_date,
            'X-Amz-Expires': str(expires_in),
            'X-Amz-SignedHeaders': signed_headers,
        })
        canonical_query = '&'.join(
            f"{quote(name, safe='-_.~')}={quote(value, safe='-_.~')}" for name, value in sorted(query.items())
        )

        canonical_request = (
            f"{method}\n"
            f"{quote(path, safe='/-_.~')}\n"
            f"{canonical_query}\n"
            f"{canonical_headers}\n"
            f"{signed_headers}\n"
            f"UNSIGNED-PAYLOAD"
        )
        signature = self._signature(date_stamp, amz_date, canonical_request)
        return f"{url}?{canonical_query}&X-Amz-Signature={signature}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(verify=self.verify_ssl, timeout=30.0)

    def generate_key(self) -> str:
        return generate_key(self.namespace)

    async def put(self, data: bytes, metadata: Optional[BlobMetadata] = None) -> str:
        key = self.generate_key()
        await self.upload(key, data, metadata.content_type if metadata else None)
        return key

    async def upload(self, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        url, path = self._make_url_and_path(key)
        headers = self._auth_headers("PUT", path, data)
        headers["Content-Type"] = content_type or "application/octet-stream"

        try:
            async with self._client() as client:
                resp = await client.put(url, content=data, headers=headers)
        except httpx.HTTPError as e:
            raise StoreUnavailableError(f"S3 PUT {key} failed: {e}") from e
        if resp.status_code not in (200, 201):
            raise StoreUnavailableError(f"S3 PUT failed: {resp.status_code} {resp.text}")

    async def get(self, key: str) -> Optional[bytes]:
        url, path = self._make_url_and_path(key)
        headers = self._auth_headers("GET", path, b"")

        try:
            async with self._client() as client:
                resp = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            raise StoreUnavailableError(f"S3 GET {key} failed: {e}") from e
        if resp.status_code == 200:
            return resp.content
        if resp.status_code == 404:
            return None
        raise StoreUnavailableError(f"S3 GET failed: {resp.status_code} {resp.text}")

    async def exists(self, key: str) -> bool:
        url, path = self._make_url_and_path(key)
        headers = self._auth_headers("HEAD", path, b"")

        try:
            async with self._client() as client:
                resp = await client.head(url, headers=headers)
        except httpx.HTTPError as e:
            raise StoreUnavailableError(f"S3 HEAD {key} failed: {e}") from e
        if resp.status_code == 200:
            return True
        if resp.status_code == 404:
            return False
        raise StoreUnavailableError(f"S3 HEAD failed: {resp.status_code} {resp.text}")

    async def delete(self, key: str) -> None:
        url, path = self._make_url_and_path(key)
        headers = self._auth_headers("DELETE", path, b"")

        try:
            async with self._client() as client:
                resp = await client.delete(url, headers=headers)
        except httpx.HTTPError as e:
            raise StoreUnavailableError(f"S3 DELETE {key} failed: {e}") from e
        # S3 answers 204 for a missing key too; some compatible stores say 404
        if resp.status_code not in (200, 204, 404):
            raise StoreUnavailableError(f"S3 DELETE failed: {resp.status_code} {resp.text}")

    def url_for(self, key: str, filename: Optional[str] = None, content_type: Optional[str] = None) -> str:
        params = {}
        if filename:
            params['response-content-disposition'] = f'inline; filename="{filename}"'
        if content_type:
            params['response-content-type'] = content_type
        return self.presign('GET', key, self.url_expires_in, params=params)

    def direct_upload_target(self, key: str, content_type: Optional[str], byte_size: int,
                             checksum: Optional[str]) -> DirectUploadTarget:
        headers = {'Content-Type': content_type or 'application/octet-stream'}
        if checksum:
            headers['Content-MD5'] = checksum
        url = self.presign('PUT', key, self.upload_expires_in, headers=headers)
        return DirectUploadTarget(url=url, headers=headers)


def storage_config_from_settings() -> StorageConfig:
    """The only place the storage environment variables are read."""
    return StorageConfig(
        backend=settings.STORAGE_BACKEND,
        local_path=settings.LOCAL_STORAGE_PATH,
        namespace=settings.STORAGE_KEY_NAMESPACE,
        public_base_url=settings.PUBLIC_BASE_URL,
        s3_endpoint=settings.S3_ENDPOINT,
        s3_bucket=settings.S3_BUCKET,
        s3_access_key=settings.S3_ACCESS_KEY,
        s3_secret_key=settings.S3_SECRET_KEY,
        s3_region=settings.S3_REGION or None,
        s3_virtual_host=settings.S3_VIRTUAL_HOST,
        s3_verify_ssl=settings.S3_VERIFY_SSL,
        signed_url_expires_in=settings.SIGNED_URL_EXPIRES_IN,
        direct_upload_expires_in=settings.DIRECT_UPLOAD_EXPIRES_IN,
    )


def pick_storage(config: StorageConfig) -> StorageInterface:
    """Build the storage implementation named by ``config.backend``."""
    storage_type = config.backend.lower()
    if storage_type == 's3':
        logger.info('Using S3 storage bucket=%s region=%s', config.s3_bucket, config.s3_region)
        return S3HTTPStorage(endpoint=config.s3_endpoint, bucket=config.s3_bucket, region=config.s3_region,
                             access_key=config.s3_access_key, secret_key=config.s3_secret_key,
                             virtual_host=config.s3_virtual_host, namespace=config.namespace,
                             verify_ssl=config.s3_verify_ssl, url_expires_in=config.signed_url_expires_in,
                             upload_expires_in=config.direct_upload_expires_in)
    if storage_type == 'local':
        logger.info('Using local storage at %s', config.local_path)
        return LocalStorage(config.local_path, namespace=config.namespace,
                            public_base_url=config.public_base_url,
                            upload_expires_in=config.direct_upload_expires_in)
    raise ValueError(f'Unknown storage backend: {config.backend!r}')
