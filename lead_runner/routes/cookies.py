"""
Cookie Endpoints

- POST /api/save-cookie: store a Chrome cookie export for a site
- GET /api/cookie-status?site=...: whether a cookie file exists
- DELETE /api/delete-cookie?site=...: remove it
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from lead_runner.auth import verify_token
from lead_runner.config import LeadRunnerSettings, get_settings
from lead_runner.dependencies import cookie_provider_for, get_cookie_provider
from lead_runner.models import CookieRequest, CookieStatusResponse, MessageResponse
from lead_runner.services.credentials import CookieFileCredentialProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["cookies"])


@router.post("/save-cookie", response_model=MessageResponse, dependencies=[Depends(verify_token)])
async def save_cookie(
    request: CookieRequest,
    settings: LeadRunnerSettings = Depends(get_settings),
) -> MessageResponse:
    provider = cookie_provider_for(request.site, settings)
    try:
        provider.save(request.cookie)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OSError as e:
        logger.error(f"Failed to save {provider.site} cookie: {e}")
        raise HTTPException(status_code=500, detail="Failed to save cookie")
    return MessageResponse(message="Cookie saved successfully!")


@router.get("/cookie-status", response_model=CookieStatusResponse)
async def cookie_status(provider: CookieFileCredentialProvider = Depends(get_cookie_provider)) -> CookieStatusResponse:
    has_cookie = provider.has_stored_credential()
    return CookieStatusResponse(
        site=provider.site,
        has_cookie=has_cookie,
        message="Cookie is saved." if has_cookie else "No cookie saved.",
    )


@router.delete("/delete-cookie", response_model=MessageResponse, dependencies=[Depends(verify_token)])
async def delete_cookie(provider: CookieFileCredentialProvider = Depends(get_cookie_provider)) -> MessageResponse:
    provider.delete()
    return MessageResponse(message="Cookie deleted.")
