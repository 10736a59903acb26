from __future__ import annotations

from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from examharvest.core.errors import TransientStepError
from examharvest.core.site.playwright_adapter import EXAMS_ACCESS_BUTTON, PlaywrightSiteAdapter


class StubButton:
    def __init__(self, attached: bool = True, clickable: bool = True) -> None:
        self.attached = attached
        self.clickable = clickable
        self.clicks = 0

    async def wait_for(self, state: str = "visible", timeout: float | None = None) -> None:
        if not self.attached:
            raise PlaywrightTimeoutError(f"waiting for {EXAMS_ACCESS_BUTTON} to be {state}")

    async def click(self, force: bool = False) -> None:
        self.clicks += 1
        if not self.clickable:
            raise PlaywrightTimeoutError("click timed out")


class StubPage:
    def __init__(self, button: StubButton) -> None:
        self.button = button

    def locator(self, selector: str) -> StubButton:
        assert selector == EXAMS_ACCESS_BUTTON
        return self.button

    def is_closed(self) -> bool:
        return False


class StubContext:
    @asynccontextmanager
    async def expect_page(self, timeout: float | None = None):
        yield SimpleNamespace(value=None)


def adapter_on(button: StubButton) -> PlaywrightSiteAdapter:
    adapter = PlaywrightSiteAdapter("https://portal.example.org/login", screenshots_on_error=False)
    adapter._page = StubPage(button)
    adapter._context = StubContext()
    return adapter


async def test_missing_exams_button_names_the_button():
    button = StubButton(attached=False)

    with pytest.raises(TransientStepError) as excinfo:
        await adapter_on(button).open_entry_point()

    assert excinfo.value.step == "NAVIGATE"
    assert "Exams access button not found" in excinfo.value.message
    assert EXAMS_ACCESS_BUTTON in excinfo.value.message
    assert button.clicks == 0


async def test_exams_button_click_timeout_is_not_taken_for_missing_popup():
    button = StubButton(clickable=False)

    with pytest.raises(TransientStepError) as excinfo:
        await adapter_on(button).open_entry_point()

    assert excinfo.value.step == "NAVIGATE"
    assert "Clicking the exams access button timed out" in excinfo.value.message
    assert button.clicks == 1
