import uuid
from mimetypes import guess_type

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..config import settings
from ..db import get_db
from ..models.models import User
from ..services.expenses import get_expense_item_for_viewer, serialize_receipt
from ..services.receipts import list_receipts, store_receipt
from ..storage.blob_provider import BlobStorageProvider
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider


router = APIRouter(tags=["receipts"])


def get_storage() -> StorageProvider:
    """
    Storage provider for receipts.
    Uses Azure Blob when configured for it, the local filesystem otherwise.
    """
    if settings.storage_provider == "blob":
        return BlobStorageProvider()
    return LocalStorageProvider()


@router.post("/expenses/{item_id}/receipts", status_code=status.HTTP_201_CREATED)
async def upload_receipt(
    item_id: uuid.UUID,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    item = get_expense_item_for_viewer(db, item_id, user)
    content = await file.read()
    receipt = store_receipt(
        db,
        storage,
        item,
        user,
        content=content,
        original_name=file.filename or "receipt",
        content_type=file.content_type,
    )
    return serialize_receipt(receipt)


@router.get("/expenses/{item_id}/receipts")
def get_receipts(
    item_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = get_expense_item_for_viewer(db, item_id, user)
    return [serialize_receipt(r) for r in list_receipts(db, item.id)]


@router.get("/files/local/{file_path:path}")
def serve_local_file(file_path: str):
    """Serve receipts from local storage for development."""
    local_storage = LocalStorageProvider()
    path = local_storage.open_path(file_path)

    # Must stay inside the storage directory
    storage_base = local_storage.base_dir.resolve()
    if not str(path.resolve()).startswith(str(storage_base)):
        raise HTTPException(status_code=403, detail="Access denied")
    if not path.exists():
        raise HTTPException(status_code=404, detail="File not found")

    content_type = guess_type(str(path))[0] or "application/octet-stream"
    return FileResponse(path=str(path), media_type=content_type, filename=path.name)
