"""
Paid downloads: issue a single-use token, then redeem it with a redirect.
The token is the only credential on the redeem path.
"""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.download_token import as_utc
from app.schemas.payments import DownloadLinkOut
from app.services.auth.identity import require_user_id
from app.services.downloads.service import DownloadTokenService, build_download_url
from app.utils.http import get_client_ip

router = APIRouter(prefix="/downloads", tags=["downloads"])


@router.post("/{material_id}/token", response_model=DownloadLinkOut)
def issue_token(
    material_id: str,
    user_id: str = Depends(require_user_id),
    db: Session = Depends(get_db),
) -> DownloadLinkOut:
    token = DownloadTokenService(db).issue(user_id, material_id)
    return DownloadLinkOut(
        download_url=build_download_url(token.token),
        expires_at=as_utc(token.expires_at),
        token=token.token,
    )


@router.get("/{token}")
def redeem_token(token: str, request: Request, db: Session = Depends(get_db)) -> RedirectResponse:
    file_url = DownloadTokenService(db).redeem(
        token,
        ip=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return RedirectResponse(file_url, status_code=302)
