from typing import Dict, Optional

from pydantic import BaseModel, Field


class DirectUploadCreate(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    byte_size: int = Field(..., ge=0)
    checksum: Optional[str] = None
    content_type: Optional[str] = None


class DirectUploadOut(BaseModel):
    id: str
    key: str
    signed_id: str
    filename: str
    byte_size: int
    content_type: Optional[str] = None
    direct_upload: Dict[str, object]
