import logging
from datetime import datetime
from typing import Dict, List, Optional, Set, Tuple, Union
from uuid import UUID

from tortoise.models import Model
from tortoise.transactions import in_transaction

from apps.attachments.models import Attachment, Blob
from apps.storage.schema import BlobMetadata
from apps.storage.services import StorageInterface, compute_checksum
from utils.exceptions import DanglingReferenceError, StoreUnavailableError, ValidationError
from utils.jwt import generate_jwt_token, verify_jwt_token

logger = logging.getLogger(__name__)

BLOB_ID_PURPOSE = 'blob_id'

# model name -> slot names it accepts
ATTACHABLE_SLOTS: Dict[str, Set[str]] = {}


def register_attachable(model_name: str, *slots: str) -> None:
    ATTACHABLE_SLOTS.setdefault(model_name, set()).update(slots)


def owner_reference(owner: Model, slot: Optional[str] = None) -> Tuple[str, int]:
    """Return ``(record_type, record_id)`` for a saved, registered owner."""
    record_type = type(owner).__name__
    slots = ATTACHABLE_SLOTS.get(record_type)
    if slots is None:
        raise ValidationError({'record_type': [f'{record_type} does not accept attachments']})
    if slot is not None and slot not in slots:
        raise ValidationError({slot: [f'is not an attachment slot of {record_type}']})
    if owner.pk is None:
        raise ValidationError({'record_id': ['owner must be saved before attaching']})
    return record_type, owner.pk


def _as_uuid(value) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


async def find_blob(blob_id) -> Optional[Blob]:
    """Look a blob up by id; ``None`` when it does not exist or the id is malformed."""
    uid = _as_uuid(blob_id)
    if uid is None:
        return None
    return await Blob.filter(id=uid).first()


async def create_blob(storage: StorageInterface, data: bytes, filename: str,
                      content_type: Optional[str] = None) -> Blob:
    """Store ``data`` and record a Blob for it (server-mediated upload)."""
    metadata = BlobMetadata(filename=filename, content_type=content_type, byte_size=len(data),
                            checksum=compute_checksum(data))
    key = await storage.put(data, metadata)
    try:
        blob = await Blob.create(key=key, service_name=storage.service_name, **metadata.model_dump())
    except Exception:
        # without a row the sweeper could never find these bytes
        await storage.delete(key)
        raise
    logger.info('Stored blob %s (%s, %d bytes)', blob.id, key, blob.byte_size)
    return blob


async def create_blob_for_direct_upload(storage: StorageInterface, filename: str, byte_size: int,
                                        checksum: Optional[str] = None,
                                        content_type: Optional[str] = None) -> Blob:
    """Record a Blob before its bytes exist.

    The client uploads straight to the backend afterwards. If it never does,
    or never attaches the blob, the sweeper reclaims the row.
    """
    metadata = BlobMetadata(filename=filename, content_type=content_type, byte_size=byte_size,
                            checksum=checksum)
    return await Blob.create(key=storage.generate_key(), service_name=storage.service_name,
                             **metadata.model_dump())


async def attach(owner: Model, slot: str, blob: Union[Blob, UUID, str]) -> Attachment:
    record_type, record_id = owner_reference(owner, slot)
    blob_id = blob.id if isinstance(blob, Blob) else _as_uuid(blob)
    async with in_transaction():
        if blob_id is None or not await Blob.filter(id=blob_id).exists():
            raise DanglingReferenceError(slot, blob_id)
        last = await Attachment.filter(record_type=record_type, record_id=record_id, name=slot) \
            .order_by('-position').first()
        return await Attachment.create(
            name=slot,
            record_type=record_type,
            record_id=record_id,
            blob_id=blob_id,
            position=last.position + 1 if last else 0,
        )


async def detach(attachment_id: int, owner: Optional[Model] = None) -> bool:
    """Delete one Attachment row. The Blob is left for the sweeper."""
    query = Attachment.filter(id=attachment_id)
    if owner is not None:
        record_type, record_id = owner_reference(owner)
        query = query.filter(record_type=record_type, record_id=record_id)
    return await query.delete() > 0


async def resolve_attachments(owner: Model, slot: str) -> List[Tuple[Attachment, Blob]]:
    """Attachments of ``owner`` in ``slot`` paired with their Blob, skipping broken links."""
    record_type, record_id = owner_reference(owner, slot)
    attachments = await Attachment.filter(record_type=record_type, record_id=record_id, name=slot) \
        .order_by('position', 'id')
    if not attachments:
        return []
    blobs = {str(b.id): b for b in await Blob.filter(id__in=[a.blob_id for a in attachments])}
    resolved = []
    for attachment in attachments:
        blob = blobs.get(str(attachment.blob_id))
        if blob is None:
            logger.warning('Skipping attachment %s of %s#%s: blob %s is missing',
                           attachment.id, record_type, record_id, attachment.blob_id)
            continue
        resolved.append((attachment, blob))
    return resolved


async def valid_attachments_for(owner: Model, slot: str) -> List[Attachment]:
    return [attachment for attachment, _ in await resolve_attachments(owner, slot)]


async def destroy_owner(owner: Model) -> int:
    record_type, record_id = owner_reference(owner)
    return await Attachment.filter(record_type=record_type, record_id=record_id).delete()


async def purge_blob(storage: StorageInterface, blob: Blob) -> None:
    """Delete the bytes, then the row. Both steps tolerate already-missing targets."""
    if blob.service_name != storage.service_name:
        raise StoreUnavailableError(f'Blob {blob.id} is stored on {blob.service_name!r}, not {storage.service_name!r}')
    await storage.delete(blob.key)
    await Blob.filter(id=blob.id).delete()


async def is_referenced(blob_id) -> bool:
    return await Attachment.filter(blob_id=blob_id).exists()


async def orphaned_blobs(older_than: Optional[datetime] = None) -> List[Blob]:
    referenced = {str(blob_id) for blob_id in await Attachment.all().values_list('blob_id', flat=True)}
    query = Blob.all()
    if older_than is not None:
        query = query.filter(created_at__lt=older_than)
    return [blob for blob in await query.order_by('created_at') if str(blob.id) not in referenced]


async def existing_blob_ids(blob_ids=None) -> Set[str]:
    query = Blob.all() if blob_ids is None else Blob.filter(id__in=list(blob_ids))
    return {str(blob_id) for blob_id in await query.values_list('id', flat=True)}


async def dangling_attachments() -> List[Attachment]:
    existing = await existing_blob_ids()
    return [a for a in await Attachment.all().order_by('id') if str(a.blob_id) not in existing]


def sign_blob_id(blob_id) -> str:
    """Token a client hands back to attach a directly uploaded blob."""
    return generate_jwt_token({'blob_id': str(blob_id)}, purpose=BLOB_ID_PURPOSE)


def verify_signed_blob_id(signed_id: str) -> Optional[str]:
    claims = verify_jwt_token(signed_id, purpose=BLOB_ID_PURPOSE)
    return claims.get('blob_id') if claims else None
