"""Models for the blog app.

Post - an article; owns Comments and attachments in the "images" slot
Comment - a reader's reply, deleted together with its Post
"""
from tortoise import fields, models

from apps.attachments.services import register_attachable

IMAGES_SLOT = 'images'


class Post(models.Model):
    id = fields.IntField(primary_key=True)
    title = fields.CharField(max_length=255)
    content = fields.TextField()
    author = fields.CharField(max_length=100)
    published = fields.BooleanField(default=False)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    comments: fields.ReverseRelation["Comment"]

    class Meta:
        table = "posts"

    @classmethod
    def recent(cls):
        return cls.all().order_by('-created_at', '-id')

    def __str__(self):
        return self.title


class Comment(models.Model):
    id = fields.IntField(primary_key=True)
    post: fields.ForeignKeyRelation[Post] = fields.ForeignKeyField(
        "models.Post", related_name="comments", on_delete=fields.CASCADE
    )
    author = fields.CharField(max_length=100)
    content = fields.TextField()
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "comments"


register_attachable(Post.__name__, IMAGES_SLOT)
