from fastapi import Depends, HTTPException

from apps.blog import services
from apps.blog.schema import CommentCreate, CommentOut, PostCreate, PostUpdate
from apps.storage.dependencies import get_storage
from apps.storage.services import StorageInterface
from utils.exceptions import ValidationError


def _unprocessable(error: ValidationError) -> HTTPException:
    return HTTPException(status_code=422, detail={'message': 'Validation failed', 'errors': error.errors})


async def _get_post_or_404(post_id: int):
    post = await services.get_post(post_id)
    if not post:
        raise HTTPException(status_code=404, detail='Post not found')
    return post


async def list_posts(published: bool = False):
    posts = await services.list_posts(published_only=published)
    return [services.serialize_post(post, list(post.comments), await services.post_images(post)) for post in posts]


async def create_post(data: PostCreate, storage: StorageInterface = Depends(get_storage)):
    try:
        result = await services.create_post(storage, data.title, data.content, data.author, data.images)
    except ValidationError as e:
        raise _unprocessable(e)
    return {'message': 'Post was successfully created.',
            'data': await services.post_detail(result.post, result.warnings)}


async def retrieve_post(post_id: int):
    post = await _get_post_or_404(post_id)
    return await services.post_detail(post)


async def update_post(post_id: int, data: PostUpdate, storage: StorageInterface = Depends(get_storage)):
    try:
        result = await services.update_post(storage, post_id, title=data.title, content=data.content,
                                            author=data.author, images=data.images,
                                            remove_image_ids=data.remove_image_ids)
    except ValidationError as e:
        raise _unprocessable(e)
    if result is None:
        raise HTTPException(status_code=404, detail='Post not found')
    return {'message': 'Post was successfully updated.',
            'data': await services.post_detail(result.post, result.warnings)}


async def destroy_post(post_id: int):
    if not await services.delete_post(post_id):
        raise HTTPException(status_code=404, detail='Post not found')
    return {'message': 'Post was successfully deleted.', 'id': post_id}


async def create_comment(post_id: int, data: CommentCreate):
    try:
        comment = await services.add_comment(post_id, data.author, data.content)
    except ValidationError as e:
        raise _unprocessable(e)
    if comment is None:
        raise HTTPException(status_code=404, detail='Post not found')
    out = CommentOut(id=comment.id, author=comment.author, content=comment.content, created_at=comment.created_at)
    return {'message': 'Comment was successfully added.', 'data': out.model_dump(mode='json')}


async def destroy_comment(post_id: int, comment_id: int):
    if not await services.delete_comment(post_id, comment_id):
        raise HTTPException(status_code=404, detail='Comment not found')
    return {'message': 'Comment was successfully deleted.', 'id': comment_id}


async def destroy_image(post_id: int, attachment_id: int):
    post = await _get_post_or_404(post_id)
    if not await services.detach(attachment_id, owner=post):
        raise HTTPException(status_code=404, detail='Image not found')
    return {'message': 'Image was successfully removed.', 'id': attachment_id}
