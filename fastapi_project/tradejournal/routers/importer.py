"""
Importer Router

Beginner guide:
- POST /importer/upload takes a broker CSV (multipart field 'file') plus the target account_id.
- The format is detected from the header; pass format=fidelity or format=generic to force one.
- Bad rows never fail the upload: they are counted and described in `errors`.
- GET /importer/formats lists what can be imported.

Limits:
- Uploads are rate limited (IMPORT_RATE_LIMIT, default 10/minute) and capped at MAX_UPLOAD_BYTES.
"""

import os
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from sqlalchemy.orm import Session

from .. import schemas
from ..database import get_db
from ..dependencies import get_current_user_id
from ..limiter import IMPORT_RATE_LIMIT, limiter
from ..services.importer_service import ACCOUNT_NOT_FOUND, ImporterService
from ..utils.error_handling import ImportFormatError, ResourceNotFoundError

router = APIRouter(prefix="/importer", tags=["Importer"])

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))


@router.get("/formats", response_model=List[schemas.ImportFormat])
def list_formats():
    return ImporterService.available_formats()


@router.post("/upload", response_model=schemas.ImportResultRead)
@limiter.limit(IMPORT_RATE_LIMIT)
async def upload_csv(
    request: Request,
    file: UploadFile = File(...),
    account_id: int = Form(...),
    format: Optional[str] = Form(None),
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """Import one CSV export into an account.

    Returns: ImportResult counts plus the number of spreads detected
    Errors: 404 for an unknown account, 400 for unreadable files or unknown formats
    """
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise ImportFormatError(f"File exceeds the {MAX_UPLOAD_BYTES} byte upload limit")

    result = ImporterService.import_file(db, data, user_id, account_id, format_hint=format)
    if not result.success:
        if result.errors == [ACCOUNT_NOT_FOUND]:
            raise ResourceNotFoundError("Account", account_id)
        raise ImportFormatError(result.errors[0] if result.errors else "Import failed", result.errors)
    return result.to_dict()
