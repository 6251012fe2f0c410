"""Repairs drift between the Blob and Attachment tables.

Run on demand (``cli.py cleanup``), never per request. Both phases tolerate
rows created or deleted by concurrent requests between query and delete.
"""
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List

from tortoise import timezone

from apps.attachments.models import Attachment, Blob
from apps.attachments.services import (
    dangling_attachments,
    existing_blob_ids,
    is_referenced,
    orphaned_blobs,
    purge_blob,
)
from apps.storage.services import StorageInterface
from utils.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class PurgeFailure:
    blob_id: str
    key: str
    error: str


@dataclass
class CleanupReport:
    purged_blob_ids: List[str] = field(default_factory=list)
    removed_attachment_ids: List[int] = field(default_factory=list)
    failures: List[PurgeFailure] = field(default_factory=list)

    @property
    def orphaned_blobs_purged(self) -> int:
        return len(self.purged_blob_ids)

    @property
    def dangling_attachments_removed(self) -> int:
        return len(self.removed_attachment_ids)

    @property
    def changed(self) -> bool:
        return bool(self.purged_blob_ids or self.removed_attachment_ids)

    def summary(self) -> str:
        lines = [
            f'Purged {self.orphaned_blobs_purged} orphaned blob(s)',
            f'Removed {self.dangling_attachments_removed} dangling attachment(s)',
        ]
        if self.failures:
            lines.append(f'{len(self.failures)} blob(s) could not be purged:')
            lines.extend(f'  {f.blob_id} ({f.key}): {f.error}' for f in self.failures)
        return '\n'.join(lines)


async def purge_orphaned_blobs(storage: StorageInterface, report: CleanupReport, grace_seconds: int = 0) -> None:
    older_than = None
    if grace_seconds > 0:
        older_than = timezone.now() - timedelta(seconds=grace_seconds)

    for blob in await orphaned_blobs(older_than=older_than):
        # attached by a concurrent request since the query ran
        if await is_referenced(blob.id):
            continue
        try:
            await purge_blob(storage, blob)
        except (StoreUnavailableError, ValueError) as e:
            logger.warning('Could not purge blob %s (%s): %s', blob.id, blob.key, e)
            report.failures.append(PurgeFailure(blob_id=str(blob.id), key=blob.key, error=str(e)))
            continue
        report.purged_blob_ids.append(str(blob.id))


async def remove_dangling_attachments(report: CleanupReport) -> None:
    candidates = await dangling_attachments()
    if not candidates:
        return
    # a blob may have been created for one of these in the meantime
    still_present = await existing_blob_ids({a.blob_id for a in candidates})
    ids = [a.id for a in candidates if str(a.blob_id) not in still_present]
    if not ids:
        return
    await Attachment.filter(id__in=ids).delete()
    report.removed_attachment_ids.extend(ids)


async def run_cleanup(storage: StorageInterface, grace_seconds: int = 0) -> CleanupReport:
    """Purge orphaned Blobs, then delete dangling Attachments.

    Per-blob failures (unreachable store, unusable key, blob held by another
    backend) are collected on the report rather than raised; the affected rows
    stay so the next run can retry them.
    """
    report = CleanupReport()
    logger.info('Cleanup started (%d blobs, %d attachments)', await Blob.all().count(),
                await Attachment.all().count())
    await purge_orphaned_blobs(storage, report, grace_seconds=grace_seconds)
    await remove_dangling_attachments(report)
    logger.info('Cleanup finished: %d orphaned blob(s) purged, %d dangling attachment(s) removed, %d failure(s)',
                report.orphaned_blobs_purged, report.dangling_attachments_removed, len(report.failures))
    return report
