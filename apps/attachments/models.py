"""Models for the attachment ledger.

Blob - metadata about one stored file and the key locating its bytes
Attachment - links an owner record and a named slot (e.g. "images") to a Blob

``Attachment.blob_id`` is a plain column rather than a foreign key: uploads
can be interrupted half way, so rows pointing at a missing Blob must be
representable, detectable and cleanable.
"""
from tortoise import fields, models


class Blob(models.Model):
    id = fields.UUIDField(primary_key=True)
    # opaque key inside the storage backend; never changes once written
    key = fields.CharField(max_length=255, unique=True)
    filename = fields.CharField(max_length=255)
    content_type = fields.CharField(max_length=100, null=True)
    byte_size = fields.BigIntField(default=0)
    checksum = fields.CharField(max_length=64, null=True)
    service_name = fields.CharField(max_length=50)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "blobs"

    def __str__(self):
        return f'{self.filename} ({self.key})'


class Attachment(models.Model):
    id = fields.IntField(primary_key=True)
    name = fields.CharField(max_length=50)
    record_type = fields.CharField(max_length=50)
    record_id = fields.IntField()
    blob_id = fields.UUIDField(db_index=True)
    position = fields.IntField(default=0)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "attachments"
        indexes = (("record_type", "record_id", "name"),)
