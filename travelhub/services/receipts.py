"""
Receipt uploads for expense items.

Files go to the configured blob store under a canonical key; the database
row keeps the key, a download URL and the original filename. Receipts are
never modified after creation.
"""
import io
import os
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from azure.core.exceptions import AzureError
from slugify import slugify
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import ExpenseItem, Receipt, User
from ..storage.provider import StorageProvider
from .errors import StoreUnavailable, Unauthorized, ValidationFailed
from .permissions import can_manage_expenses


logger = structlog.get_logger(__name__)


def canonical_key(request_id: uuid.UUID, expense_item_id: uuid.UUID, original_name: str) -> str:
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    year = datetime.now(timezone.utc).strftime("%Y")
    safe_name = slugify(os.path.splitext(original_name)[0]) or "receipt"
    ext = os.path.splitext(original_name)[1].lower()
    unique = uuid.uuid4().hex[:8]
    return f"/receipts/{year}/{request_id}/{expense_item_id}/{today}_{unique}_{safe_name}{ext}"


def store_receipt(
    db: Session,
    storage: StorageProvider,
    item: ExpenseItem,
    user: User,
    *,
    content: bytes,
    original_name: str,
    content_type: Optional[str] = None,
) -> Receipt:
    if not can_manage_expenses(user, item.request):
        raise Unauthorized("Only the request owner can upload receipts")
    if not content:
        raise ValidationFailed("No file provided")
    if len(content) > settings.receipt_max_bytes:
        raise ValidationFailed(f"Receipt exceeds the {settings.receipt_max_bytes} byte limit")
    original_name = original_name or "receipt"

    key = canonical_key(item.request_id, item.id, original_name)
    try:
        storage.copy_in(io.BytesIO(content), key, content_type)
    except (OSError, AzureError) as exc:
        logger.warning("receipt_upload_failed", expense_item_id=str(item.id), key=key, error=str(exc))
        raise StoreUnavailable("Could not store receipt file") from exc
    receipt = Receipt(
        expense_item_id=item.id,
        original_filename=original_name,
        storage_key=key,
        public_url=storage.get_download_url(key, settings.receipt_url_ttl_seconds),
        provider=storage.name,
        content_type=content_type,
        size_bytes=len(content),
        uploaded_at=datetime.now(timezone.utc),
    )
    try:
        db.add(receipt)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        storage.delete(key)
        raise StoreUnavailable("Could not save receipt") from exc
    db.refresh(receipt)
    logger.info("receipt_stored", receipt_id=str(receipt.id), expense_item_id=str(item.id), key=key)
    return receipt


def list_receipts(db: Session, expense_item_id: uuid.UUID) -> List[Receipt]:
    return (
        db.query(Receipt)
        .filter(Receipt.expense_item_id == expense_item_id)
        .order_by(Receipt.uploaded_at.asc())
        .all()
    )
