import os

from fastapi import Depends, HTTPException, Request
from starlette.responses import FileResponse, RedirectResponse, Response

from apps.attachments.models import Blob
from apps.attachments.schema import DirectUploadCreate, DirectUploadOut
from apps.attachments.services import create_blob_for_direct_upload, find_blob, sign_blob_id
from apps.storage.dependencies import get_storage
from apps.storage.services import DISK_UPLOAD_PURPOSE, LocalStorage, StorageInterface, compute_checksum
from utils.jwt import verify_jwt_token


async def create_direct_upload(data: DirectUploadCreate, storage: StorageInterface = Depends(get_storage)):
    blob = await create_blob_for_direct_upload(storage, **data.model_dump())
    target = storage.direct_upload_target(blob.key, blob.content_type, blob.byte_size, blob.checksum)
    out = DirectUploadOut(
        id=str(blob.id),
        key=blob.key,
        signed_id=sign_blob_id(blob.id),
        filename=blob.filename,
        byte_size=blob.byte_size,
        content_type=blob.content_type,
        direct_upload=target.model_dump(),
    )
    return {'message': 'Direct upload created', 'data': out.model_dump()}


async def receive_disk_upload(request: Request, token: str, storage: StorageInterface = Depends(get_storage)):
    """Accept the bytes of a direct upload when the local backend is active."""
    if not isinstance(storage, LocalStorage):
        raise HTTPException(status_code=404, detail='Not found')
    claims = verify_jwt_token(token, DISK_UPLOAD_PURPOSE)
    if not claims:
        raise HTTPException(status_code=404, detail='Invalid or expired upload token')
    key = claims['key']
    if not await Blob.filter(key=key).exists():
        raise HTTPException(status_code=404, detail='Direct upload no longer exists')
    if await storage.exists(key):
        raise HTTPException(status_code=409, detail='Direct upload was already received')

    expected_type = claims.get('content_type') or 'application/octet-stream'
    if request.headers.get('content-type', 'application/octet-stream') != expected_type:
        raise HTTPException(status_code=422, detail='Content-Type does not match the direct upload')
    body = await request.body()
    if len(body) != claims['byte_size']:
        raise HTTPException(status_code=422, detail='Content-Length does not match the direct upload')
    if claims.get('checksum') and compute_checksum(body) != claims['checksum']:
        raise HTTPException(status_code=422, detail='Checksum does not match the direct upload')

    await storage.upload(key, body, claims.get('content_type'))
    return Response(status_code=204)


async def retrieve_blob(blob_id: str, storage: StorageInterface = Depends(get_storage)):
    blob = await find_blob(blob_id)
    if not blob:
        raise HTTPException(status_code=404, detail='Blob not found')
    location = storage.url_for(blob.key, blob.filename, blob.content_type)
    if location.startswith(('http://', 'https://')):
        return RedirectResponse(location, status_code=307)
    if not os.path.exists(location):
        raise HTTPException(status_code=404, detail='Blob data not found')
    return FileResponse(location, media_type=blob.content_type or 'application/octet-stream',
                        filename=blob.filename, content_disposition_type='inline')
