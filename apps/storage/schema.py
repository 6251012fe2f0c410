from typing import Dict, Optional

from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    """Everything needed to build a storage backend, resolved once at startup."""
    backend: str = 'local'
    local_path: str = './storage'
    namespace: str = ''
    public_base_url: str = 'http://localhost:8000'
    s3_endpoint: str = ''
    s3_bucket: str = ''
    s3_access_key: str = ''
    s3_secret_key: str = ''
    s3_region: Optional[str] = None
    s3_virtual_host: bool = False
    s3_verify_ssl: bool = True
    signed_url_expires_in: int = 300
    direct_upload_expires_in: int = 600


class BlobMetadata(BaseModel):
    filename: str = Field(..., min_length=1)
    content_type: Optional[str] = None
    byte_size: int = Field(..., ge=0)
    checksum: Optional[str] = None


class DirectUploadTarget(BaseModel):
    url: str
    headers: Dict[str, str] = Field(default_factory=dict)
