import base64
import binascii
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from tortoise.transactions import in_transaction

from apps.attachments.services import (
    attach,
    create_blob,
    destroy_owner,
    detach,
    resolve_attachments,
    verify_signed_blob_id,
)
from apps.blog.models import IMAGES_SLOT, Comment, Post
from apps.blog.schema import CommentOut, ImageOut, ImageUpload, PostOut
from apps.storage.services import StorageInterface
from utils.exceptions import DanglingReferenceError, StoreUnavailableError, ValidationError

logger = logging.getLogger(__name__)

IMAGE_UPLOAD_ERROR = 'There was an error uploading one or more images. Please try again.'

_DATA_URI = re.compile(r'^data:(?P<type>[\w.+-]+/[\w.+-]+)?(?:;[\w-]+=[^;,]+)*;base64,', re.IGNORECASE)


@dataclass
class PostResult:
    """A saved post plus per-field warnings (e.g. images that failed to attach)."""
    post: Post
    warnings: Dict[str, List[str]] = field(default_factory=dict)


def decode_base64_data(data: str) -> bytes:
    """Decode plain base64 or a ``data:<type>;base64,`` URI."""
    match = _DATA_URI.match(data)
    if match:
        data = data[match.end():]
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError('Invalid base64 data') from e


def data_uri_content_type(data: str) -> Optional[str]:
    match = _DATA_URI.match(data)
    return match.group('type') if match else None


def validate_presence(values: Dict[str, Optional[str]]) -> None:
    errors = {name: ["can't be blank"] for name, value in values.items() if value is None or not value.strip()}
    if errors:
        raise ValidationError(errors)


def _add_warning(warnings: Dict[str, List[str]], name: str, message: str) -> None:
    messages = warnings.setdefault(name, [])
    if message not in messages:
        messages.append(message)


async def attach_images(storage: StorageInterface, post: Post, images: Iterable[ImageUpload],
                        warnings: Dict[str, List[str]]) -> int:
    """Attach each upload to ``post``; failures become warnings, never errors.

    Returns the number of images attached.
    """
    attached = 0
    for image in images:
        try:
            if image.signed_id:
                blob = verify_signed_blob_id(image.signed_id)
                if blob is None:
                    raise DanglingReferenceError(IMAGES_SLOT)
            else:
                data = decode_base64_data(image.data)
                blob = await create_blob(storage, data, image.filename or 'upload',
                                         image.content_type or data_uri_content_type(image.data))
            await attach(post, IMAGES_SLOT, blob)
            attached += 1
        except (ValueError, DanglingReferenceError, StoreUnavailableError) as e:
            logger.error('Image upload for post %s failed: %s', post.id, e)
            _add_warning(warnings, IMAGES_SLOT, IMAGE_UPLOAD_ERROR)
    return attached


async def create_post(storage: StorageInterface, title: Optional[str], content: Optional[str],
                      author: Optional[str], images: Optional[Iterable[ImageUpload]] = None) -> PostResult:
    validate_presence({'title': title, 'content': content, 'author': author})
    async with in_transaction():
        post = await Post.create(title=title, content=content, author=author, published=True)
    result = PostResult(post=post)
    await attach_images(storage, post, images or [], result.warnings)
    logger.info('Created post %s', post.id)
    return result


async def update_post(storage: StorageInterface, post_id: int, title: Optional[str] = None,
                      content: Optional[str] = None, author: Optional[str] = None,
                      images: Optional[Iterable[ImageUpload]] = None,
                      remove_image_ids: Optional[Iterable[int]] = None) -> Optional[PostResult]:
    """Apply the given fields; new images are appended after existing ones."""
    post = await get_post(post_id)
    if post is None:
        return None
    changes = {name: value for name, value in (('title', title), ('content', content), ('author', author))
               if value is not None}
    validate_presence(changes)
    async with in_transaction():
        if changes:
            post.update_from_dict(changes)
            await post.save()
        for attachment_id in remove_image_ids or []:
            await detach(attachment_id, owner=post)
    result = PostResult(post=post)
    await attach_images(storage, post, images or [], result.warnings)
    return result


async def get_post(post_id: int) -> Optional[Post]:
    return await Post.filter(id=post_id).first()


async def list_posts(published_only: bool = False) -> List[Post]:
    query = Post.recent()
    if published_only:
        query = query.filter(published=True)
    return await query.prefetch_related('comments')


async def delete_post(post_id: int) -> bool:
    """Delete a post with its comments and attachments; blobs are left for the sweeper."""
    post = await get_post(post_id)
    if post is None:
        return False
    async with in_transaction():
        await Comment.filter(post_id=post.id).delete()
        removed = await destroy_owner(post)
        await post.delete()
    logger.info('Deleted post %s and %d attachment(s)', post_id, removed)
    return True


async def add_comment(post_id: int, author: Optional[str], content: Optional[str]) -> Optional[Comment]:
    post = await get_post(post_id)
    if post is None:
        return None
    validate_presence({'author': author, 'content': content})
    return await Comment.create(post=post, author=author, content=content)


async def delete_comment(post_id: int, comment_id: int) -> bool:
    return await Comment.filter(id=comment_id, post_id=post_id).delete() > 0


async def post_images(post: Post) -> List[ImageOut]:
    """Images safe to render: attachments whose blob is missing are skipped."""
    return [
        ImageOut(
            id=attachment.id,
            blob_id=str(blob.id),
            filename=blob.filename,
            content_type=blob.content_type,
            byte_size=blob.byte_size,
            position=attachment.position,
            url=f'/api/v1/blobs/{blob.id}',
        )
        for attachment, blob in await resolve_attachments(post, IMAGES_SLOT)
    ]


def serialize_post(post: Post, comments: Iterable[Comment], images: List[ImageOut],
                   warnings: Optional[Dict[str, List[str]]] = None) -> dict:
    return PostOut(
        id=post.id,
        title=post.title,
        content=post.content,
        author=post.author,
        published=post.published,
        created_at=post.created_at,
        updated_at=post.updated_at,
        images=images,
        comments=[CommentOut(id=c.id, author=c.author, content=c.content, created_at=c.created_at)
                  for c in comments],
        warnings=warnings or {},
    ).model_dump(mode='json')


async def post_detail(post: Post, warnings: Optional[Dict[str, List[str]]] = None) -> dict:
    comments = await Comment.filter(post_id=post.id).order_by('created_at', 'id')
    return serialize_post(post, comments, await post_images(post), warnings)
