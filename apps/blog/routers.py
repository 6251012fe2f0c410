
# blog/routers.py
from fastapi import APIRouter
from utils.response_wrapper import response_wrapper
from .views import (
    create_comment,
    create_post,
    destroy_comment,
    destroy_image,
    destroy_post,
    list_posts,
    retrieve_post,
    update_post,
)

router = APIRouter()

router.get("/api/v1/posts")(response_wrapper(list_posts))
router.post("/api/v1/posts", status_code=201)(response_wrapper(create_post))
router.get("/api/v1/posts/{post_id}")(response_wrapper(retrieve_post))
router.patch("/api/v1/posts/{post_id}")(response_wrapper(update_post))
router.delete("/api/v1/posts/{post_id}")(response_wrapper(destroy_post))
router.post("/api/v1/posts/{post_id}/comments", status_code=201)(response_wrapper(create_comment))
router.delete("/api/v1/posts/{post_id}/comments/{comment_id}")(response_wrapper(destroy_comment))
router.delete("/api/v1/posts/{post_id}/images/{attachment_id}")(response_wrapper(destroy_image))
