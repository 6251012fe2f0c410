
# attachments/routers.py
from fastapi import APIRouter
from utils.response_wrapper import response_wrapper
from .views import create_direct_upload, receive_disk_upload, retrieve_blob

router = APIRouter()

router.post("/api/v1/direct_uploads", status_code=201)(response_wrapper(create_direct_upload))
router.put("/api/v1/direct_uploads/disk/{token}", status_code=204)(receive_disk_upload)
router.get("/api/v1/blobs/{blob_id}")(retrieve_blob)
