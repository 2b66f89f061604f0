"""
Authentication Module

Optional bearer-token authentication using a shared secret. Required in
production and whenever RUNNER_API_SECRET is set; open otherwise.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from lead_runner.config import LeadRunnerSettings, get_settings

logger = logging.getLogger(__name__)
security = HTTPBearer(auto_error=False)


async def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(security),
    settings: LeadRunnerSettings = Depends(get_settings),
) -> Optional[HTTPAuthorizationCredentials]:
    """
    Verify the shared secret token.

    Raises:
        HTTPException: 401 if the token is missing or wrong, 500 if auth is
            required but no secret is configured
    """
    if not settings.auth_required:
        return credentials

    if not settings.runner_api_secret:
        raise HTTPException(status_code=500, detail="Server authentication not configured")

    if credentials is None or credentials.credentials != settings.runner_api_secret:
        logger.warning("Rejected request with missing or invalid token")
        raise HTTPException(status_code=401, detail="Invalid authentication token")

    return credentials
