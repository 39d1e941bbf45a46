from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, SecureDownloadRequired
from app.db.session import get_db
from app.models.material import AccessType
from app.paywall import EntitlementService
from app.services.auth.identity import Identity, get_optional_identity
from app.services.materials.service import MaterialService

router = APIRouter(prefix="/materials", tags=["materials"])


@router.post("/{material_id}/download")
def download_material(
    material_id: str,
    identity: Identity | None = Depends(get_optional_identity),
    db: Session = Depends(get_db),
) -> dict:
    """Direct path for free and drive-protected materials. Paid materials need a download token."""
    decision = EntitlementService(db).check_access(material_id, identity)
    if decision.requires_download_token:
        raise SecureDownloadRequired(material_id)
    if not decision.link_url:
        raise NotFoundError("File not available")

    MaterialService(db).increment_downloads(material_id)
    if decision.access_type == AccessType.DRIVE_PROTECTED:
        return {"message": "Drive link provided", "materialId": material_id, "driveUrl": decision.link_url}
    return {"message": "Download ready", "materialId": material_id, "url": decision.link_url}
