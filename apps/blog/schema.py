from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class ImageUpload(BaseModel):
    """Either inline bytes (``data``) or a blob uploaded directly (``signed_id``)."""
    filename: Optional[str] = None
    content_type: Optional[str] = None
    data: Optional[str] = None
    signed_id: Optional[str] = None

    @model_validator(mode='after')
    def _one_source(self):
        if bool(self.data) == bool(self.signed_id):
            raise ValueError('provide exactly one of data or signed_id')
        return self


class PostCreate(BaseModel):
    # presence is checked by the service so blanks report per-field errors
    title: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None
    images: List[ImageUpload] = Field(default_factory=list)


class PostUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    author: Optional[str] = None
    images: List[ImageUpload] = Field(default_factory=list)
    remove_image_ids: List[int] = Field(default_factory=list)


class CommentCreate(BaseModel):
    author: Optional[str] = None
    content: Optional[str] = None


class CommentOut(BaseModel):
    id: int
    author: str
    content: str
    created_at: datetime


class ImageOut(BaseModel):
    id: int
    blob_id: str
    filename: str
    content_type: Optional[str] = None
    byte_size: int
    position: int
    url: str


class PostOut(BaseModel):
    id: int
    title: str
    content: str
    author: str
    published: bool
    created_at: datetime
    updated_at: datetime
    images: List[ImageOut] = Field(default_factory=list)
    comments: List[CommentOut] = Field(default_factory=list)
    warnings: Dict[str, List[str]] = Field(default_factory=dict)
