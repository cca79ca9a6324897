from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from repairshop.auth import Capability, Principal, require_capability
from repairshop.security.csrf import verify_csrf
from repairshop.services.email_service import send_email

router = APIRouter(prefix='/api', tags=['api'])


class SendEmailRequest(BaseModel):
    to: str = Field(min_length=3, max_length=320)
    subject: str = Field(min_length=1, max_length=200)
    html: str = Field(min_length=1)


class SendEmailResponse(BaseModel):
    success: bool
    id: str | None = None


@router.post('/send-email', response_model=SendEmailResponse)
def relay_email(
    payload: SendEmailRequest,
    _principal: Principal = Depends(require_capability(Capability.SEND_EMAIL)),
    _: None = Depends(verify_csrf),
) -> SendEmailResponse:
    try:
        result = send_email(to=payload.to, subject=payload.subject, html=payload.html)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return SendEmailResponse(success=True, id=result.get('id'))
