"""
Import/export API routes
"""

from fastapi import APIRouter, Depends, UploadFile, File
from fastapi.responses import Response
from sqlalchemy.orm import Session

from guestlist.core.config import settings
from guestlist.core.db import get_db
from guestlist.core.exceptions import ValidationError
from guestlist.schemas.transfer import ImportRequest
from guestlist.services.transfer_service import TransferService
from guestlist.utils.responses import success_response
from guestlist.utils.security import SessionUser, get_current_user

router = APIRouter()

@router.get("/organizations/{organization_id}/export")
async def export_organization(
    organization_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Export settings, guests and members as JSON (admin only)"""
    return success_response(
        message="Export created",
        data=TransferService.export_json(organization_id, user, db)
    )

@router.post("/organizations/{organization_id}/import")
async def import_organization(
    organization_id: str,
    request: ImportRequest,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Replace settings and guests from a JSON export (admin only)"""
    summary = TransferService.import_json(organization_id, request.data, user, db)
    return success_response(
        message="Data imported successfully",
        data=summary
    )

@router.get("/organizations/{organization_id}/export.xlsx")
async def export_guest_sheet(
    organization_id: str,
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Download the guest list as an Excel sheet"""
    content = TransferService.export_excel(organization_id, user, db)

    return Response(
        content=content,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename=guests_{organization_id}.xlsx"}
    )

@router.post("/organizations/{organization_id}/import.xlsx")
async def import_guest_sheet(
    organization_id: str,
    file: UploadFile = File(...),
    user: SessionUser = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Append guests from an uploaded Excel sheet (admin only)"""
    if not file.filename or not file.filename.endswith(('.xlsx', '.xls')):
        raise ValidationError("File must be an Excel file (.xlsx or .xls)")

    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise ValidationError(f"File size exceeds maximum limit of {settings.MAX_UPLOAD_SIZE // (1024*1024)}MB")

    result = TransferService.import_excel(organization_id, content, user, db)
    return success_response(
        message=f"Successfully imported {result['guests_imported']} guests",
        data=result
    )
