"""
Site adapter base class and data structures.

Defines the navigation/extraction capability the extraction state machine
drives. An adapter owns exactly one browsing session between open() and
close(); the state machine decides the order of the calls.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from examharvest.core.extract.base import RawItem


@dataclass(frozen=True)
class SelectOption:
    """An <option> of a selection control."""

    value: str
    label: str


class SiteAdapter(ABC):
    """Abstract base class for one authenticated session against the portal.

    Selection methods raise TransientStepError when the page does not
    respond in time; login raises AuthenticationError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Adapter identifier."""
        pass

    @abstractmethod
    async def open(self) -> None:
        """Acquire a fresh browsing session."""
        pass

    @abstractmethod
    async def open_login_page(self) -> None:
        """Navigate to the login page of the portal."""
        pass

    @abstractmethod
    async def login(self, login: str, password: str, *, use_email_field: bool) -> None:
        """Submit credentials and wait for the session-establishing navigation.

        Args:
            login: User identifier
            password: Plain-text password
            use_email_field: Fill the e-mail field instead of the user field
        """
        pass

    @abstractmethod
    async def open_entry_point(self) -> None:
        """Navigate to the assessments landing page."""
        pass

    @abstractmethod
    async def list_periods(self) -> list[SelectOption]:
        """Read all options of the period selector, placeholders included."""
        pass

    @abstractmethod
    async def current_period(self) -> str:
        """Read the currently selected period value."""
        pass

    @abstractmethod
    async def select_period(self, value: str) -> None:
        """Select a period and wait for the dependent controls to reload."""
        pass

    @abstractmethod
    async def list_units(self) -> list[SelectOption]:
        """Read all options of the exam selector, placeholders included."""
        pass

    @abstractmethod
    async def select_unit(self, value: str) -> None:
        """Select an exam and wait for it to render."""
        pass

    @abstractmethod
    async def wait_for_items(self, timeout_ms: int) -> bool:
        """Wait for the first question button to become visible."""
        pass

    @abstractmethod
    async def list_items(self) -> list[str]:
        """Re-locate the live question buttons and return their labels."""
        pass

    @abstractmethod
    async def open_item(self, index: int, *, force: bool = False) -> None:
        """Click the question button at ``index`` of the live list."""
        pass

    @abstractmethod
    async def wait_for_item_content(self, timeout_ms: int) -> bool:
        """Wait for the statement region of the open question."""
        pass

    @abstractmethod
    async def read_item(self, label: str) -> RawItem:
        """Read the raw content of the open question."""
        pass

    async def close(self) -> None:
        """Release the browsing session."""
        pass

    @asynccontextmanager
    async def session(self) -> AsyncIterator["SiteAdapter"]:
        """Own one browsing session; it is released on every exit path."""
        try:
            await self.open()
            yield self
        finally:
            await self.close()
