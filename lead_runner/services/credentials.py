"""
Cookie-file credentials.

Each site's session cookies live in ``<cookies_dir>/<site>_cookies.json`` as a
Chrome-extension export (a JSON array). They are converted to Playwright's
cookie shape on load.
"""

import json
import logging
import math
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from lead_runner.common.error_handling import CredentialMissingError
from lead_runner.services.base import CredentialProvider

logger = logging.getLogger(__name__)

LINKEDIN = "linkedin"
SIGNALHIRE = "signalhire"
CONTACTOUT = "contactout"

# Only these cookie domains are loaded for a site; None loads everything
SITE_DOMAINS: Dict[str, Optional[str]] = {
    LINKEDIN: r"\.linkedin\.com$",
    SIGNALHIRE: None,
    CONTACTOUT: None,
}

_SAME_SITE = {
    "no_restriction": "None",
    "none": "None",
    "lax": "Lax",
    "strict": "Strict",
}


def normalize_same_site(value: Any) -> Optional[str]:
    """Chrome export sameSite -> Playwright value; unknown/unspecified -> None (omitted)."""
    if value is None:
        return None
    return _SAME_SITE.get(str(value).lower())


def convert_cookie(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert one Chrome-exported cookie to a Playwright cookie dict.

    Session cookies (or those without ``expirationDate``) get no ``expires``.
    """
    cookie: Dict[str, Any] = {
        "name": raw["name"],
        "value": str(raw.get("value") if raw.get("value") is not None else ""),
        "domain": raw.get("domain", ""),
        "path": raw.get("path") or "/",
        "httpOnly": bool(raw.get("httpOnly")),
        "secure": bool(raw.get("secure")),
    }
    expiration = raw.get("expirationDate")
    if isinstance(expiration, (int, float)) and not isinstance(expiration, bool) and not raw.get("session"):
        cookie["expires"] = math.floor(expiration)
    same_site = normalize_same_site(raw.get("sameSite"))
    if same_site:
        cookie["sameSite"] = same_site
    return cookie


def parse_cookie_export(text: str) -> List[Dict[str, Any]]:
    """
    Parse a cookie export string.

    Raises:
        ValueError: if the text is not a JSON array
    """
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid cookie JSON: {e}")
    if not isinstance(parsed, list):
        raise ValueError("Invalid cookie JSON: cookie data should be a JSON array")
    return parsed


class CookieFileCredentialProvider(CredentialProvider):
    """
    Cookie credential for one site, stored as a JSON file.

    Usage:
        provider = CookieFileCredentialProvider(LINKEDIN, settings.cookies_dir)
        if provider.has_stored_credential():
            await session.add_cookies(provider.load_credential())
    """

    def __init__(self, site: str, cookies_dir: Union[str, Path]):
        self.site = site
        self.path = Path(cookies_dir) / f"{site}_cookies.json"
        pattern = SITE_DOMAINS.get(site)
        self._domain_re = re.compile(pattern, re.IGNORECASE) if pattern else None

    def has_stored_credential(self) -> bool:
        return self.path.exists() and self.path.stat().st_size > 0

    def load_credential(self) -> List[Dict[str, Any]]:
        if not self.has_stored_credential():
            raise CredentialMissingError(self.site)
        raw = parse_cookie_export(self.path.read_text(encoding="utf-8"))
        cookies = [convert_cookie(c) for c in raw if isinstance(c, dict) and c.get("name")]
        if self._domain_re is not None:
            cookies = [c for c in cookies if self._domain_re.search(c["domain"] or "")]
        if not cookies:
            raise CredentialMissingError(self.site)
        return cookies

    def save(self, cookie_text: str) -> Path:
        """
        Validate and store a cookie export, replacing any previous file.

        Raises:
            ValueError: if the text is not a JSON array
        """
        parsed = parse_cookie_export(cookie_text)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(parsed, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.path)
        logger.info(f"Saved {len(parsed)} {self.site} cookie(s)")
        return self.path

    def delete(self) -> None:
        """Remove the stored file; no error if absent."""
        try:
            self.path.unlink()
            logger.info(f"Deleted {self.site} cookies")
        except FileNotFoundError:
            pass
