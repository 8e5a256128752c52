# showroom/routers/storage.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from showroom.integrations.storage import StorageGateway
from showroom.routers.deps import get_storage, require_admin
from showroom.schemas.admin import BucketStatusRead, RemoveResult, StorageInfoRead, UploadResult
from showroom.services.admin_session import AdminSession

router = APIRouter(prefix="/storage", tags=["storage"])


@router.post(
    "/images",
    response_model=UploadResult,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a product image",
    description="Images only, at most 5MB. Never overwrites an existing object.",
)
def upload_image(
    file: UploadFile = File(...),
    product_id: Optional[str] = Form(default=None),
    storage: StorageGateway = Depends(get_storage),
    _admin: AdminSession = Depends(require_admin),
):
    # read one byte past the limit so oversize files are refused without buffering them whole
    content = file.file.read(storage.cfg.max_upload_bytes + 1)
    url = storage.upload(
        content,
        filename=file.filename,
        content_type=file.content_type,
        product_id=(product_id or "").strip() or None,
    )
    return UploadResult(url=url)


@router.delete(
    "/images",
    response_model=RemoveResult,
    summary="Delete an uploaded image by its public URL",
)
def remove_image(
    url: str = Query(..., min_length=1),
    storage: StorageGateway = Depends(get_storage),
    _admin: AdminSession = Depends(require_admin),
):
    if not storage.is_managed_url(url):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"kind": "validation", "message": "URL does not belong to the product image bucket"},
        )
    return RemoveResult(url=url, deleted=storage.remove(url))


@router.get(
    "/status",
    response_model=BucketStatusRead,
    summary="Does the image bucket exist?",
    description="`unknown` means the credentials cannot tell; uploads are still attempted.",
)
def bucket_status(storage: StorageGateway = Depends(get_storage)):
    return BucketStatusRead(bucket=storage.cfg.bucket, status=storage.probe_exists().value)


@router.get(
    "/info",
    response_model=StorageInfoRead,
    summary="File count and total size of the image bucket",
)
def bucket_info(
    storage: StorageGateway = Depends(get_storage),
    _admin: AdminSession = Depends(require_admin),
):
    info = storage.storage_info()
    if info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"kind": "not_found", "message": f"Bucket {storage.cfg.bucket} not confirmed"},
        )
    return StorageInfoRead(
        bucket=storage.cfg.bucket,
        file_count=info.file_count,
        total_size=info.total_size,
        total_size_mb=info.total_size_mb,
    )
