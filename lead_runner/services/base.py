"""
Collaborator interfaces used by the job runner.

The runner only talks to the browser, the credential files and the two
sidebars through these classes, so tests can substitute fakes.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Protocol


class CredentialProvider(ABC):
    """Authentication artifact (cookie set) for one site."""

    site: str = ""

    @abstractmethod
    def has_stored_credential(self) -> bool:
        """True if a credential file exists and is non-empty."""
        pass

    @abstractmethod
    def load_credential(self) -> List[Dict[str, Any]]:
        """
        Load the credential as Playwright cookie dicts.

        Raises:
            CredentialMissingError: if nothing is stored
        """
        pass


class BrowserSession(ABC):
    """One live browser context; the only resource a running job drives."""

    @abstractmethod
    async def new_page(self) -> Any:
        pass

    @abstractmethod
    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> int:
        """Add cookies, returning how many were accepted."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the context. Safe to call more than once."""
        pass


class BrowserLauncher(ABC):
    @abstractmethod
    async def launch(self) -> BrowserSession:
        pass


class Pacer(ABC):
    """Human-pacing step run before each pagination attempt."""

    @abstractmethod
    async def settle(self, page: Any) -> None:
        pass


class ResultView(Protocol):
    """
    Live search-result list as seen by the pagination advancer.

    All methods are bounded by their own timeouts and never wait forever.
    """

    async def fingerprint(self) -> str:
        """Signature of the visible result set."""
        ...

    async def has_exhaustion_banner(self) -> bool:
        ...

    async def is_last_page(self) -> bool:
        """True if the next control is absent/disabled or the page counter is at its end."""
        ...

    async def current_page_number(self) -> int:
        ...

    async def click_next(self, target_page: int) -> bool:
        """Click the numbered control for ``target_page`` if present, else Next."""
        ...

    async def reload(self) -> None:
        ...

    def url(self) -> str:
        ...

    async def goto(self, url: str) -> None:
        ...
