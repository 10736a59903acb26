"""
Playwright site adapter for the student portal.

Provides the browser session the extraction state machine drives:
- Chromium launch with automation flags disabled
- Image and font requests aborted at the context router
- Popup-or-in-place navigation to the assessments system
- Screenshot capture when a step times out
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Any, TYPE_CHECKING
from urllib.parse import urljoin

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from examharvest.core.errors import AuthenticationError, TransientStepError
from examharvest.core.extract.base import RawItem

from .base import SelectOption, SiteAdapter

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Locator, Page, Playwright, Route

    from examharvest.core.config.models import AppConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Portal selectors
# =============================================================================


USER_FIELD = "#form\\:usuario"
EMAIL_FIELD = "#form\\:email"
PASSWORD_FIELD = "#form\\:senha"
LOGIN_BUTTON = "#form\\:loginBtn\\:loginBtn"

EXAMS_ACCESS_BUTTON = 'a[id$="botaoAcessoSistemaProvasMestreGR"]'
RESULTS_MENU_TEXT = "Resultados"
ASSESSMENTS_LINK_TEXT = "Avaliações"

PERIOD_SELECT = 'xpath=//h4[contains(., "Ano letivo:")]/../following-sibling::div//select'
UNIT_SELECT = 'select[name="PROVA"]'

ITEM_BUTTON_RE = re.compile(r"^Q\d+")
FIRST_ITEM_BUTTON_RE = re.compile(r"^Q0?1")

STATEMENT_REGION = ".col-md-7.resposta > div"
JUSTIFICATION_REGION = "blockquote"
ALTERNATIVES_REGION = ".col-md-5"
IMAGES = ".resposta img"

POPUP_TIMEOUT_MS = 10000
LINK_ATTACH_TIMEOUT_MS = 3000
LOGIN_SETTLE_MS = 5000

_READ_OPTIONS_JS = """
options => options.map(opt => ({
    value: opt.getAttribute('value') || '',
    label: (opt.textContent || '').trim()
}))
"""

_READ_IMAGES_JS = "imgs => imgs.map(img => img.src)"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


# =============================================================================
# PlaywrightSiteAdapter Implementation
# =============================================================================


class PlaywrightSiteAdapter(SiteAdapter):
    """Playwright-driven session against the student portal.

    One instance owns one browser between open() and close(). The active
    page changes when the assessments system opens in a popup.
    """

    def __init__(
        self,
        target_url: str,
        headless: bool = True,
        browser_type: str = "chromium",
        viewport_width: int = 1920,
        viewport_height: int = 1080,
        user_agent: str | None = None,
        locale: str = "pt-BR",
        timezone_id: str = "America/Sao_Paulo",
        navigation_timeout_ms: int = 30000,
        action_timeout_ms: int = 10000,
        unit_select_timeout_ms: int = 120000,
        settle_delay_ms: int = 1500,
        blocked_resource_types: list[str] | None = None,
        screenshots_path: Path | str | None = None,
        screenshots_on_error: bool = True,
    ):
        """Initialize the adapter.

        Args:
            target_url: Login page of the portal
            headless: Run browser in headless mode
            browser_type: Browser to use (chromium, firefox, webkit)
            viewport_width: Browser viewport width
            viewport_height: Browser viewport height
            user_agent: Custom user agent string
            locale: Context locale
            timezone_id: Context timezone
            navigation_timeout_ms: Timeout for page navigation
            action_timeout_ms: Default timeout for actions
            unit_select_timeout_ms: Timeout for exam selection
            settle_delay_ms: Pause after AJAX-driven selections
            blocked_resource_types: Resource types to abort
            screenshots_path: Directory for error screenshots
            screenshots_on_error: Capture screenshots on errors
        """
        self.target_url = target_url
        self.headless = headless
        self.browser_type = browser_type
        self.viewport_width = viewport_width
        self.viewport_height = viewport_height
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.locale = locale
        self.timezone_id = timezone_id
        self.navigation_timeout_ms = navigation_timeout_ms
        self.action_timeout_ms = action_timeout_ms
        self.unit_select_timeout_ms = unit_select_timeout_ms
        self.settle_delay_ms = settle_delay_ms
        self.blocked_resource_types = set(
            blocked_resource_types if blocked_resource_types is not None else ["image", "font"]
        )
        self.screenshots_on_error = screenshots_on_error
        self.screenshots_path = Path(screenshots_path) if screenshots_path else Path("snapshots")

        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @classmethod
    def from_config(cls, config: AppConfig) -> "PlaywrightSiteAdapter":
        """Build an adapter from application configuration."""
        browser = config.browser
        return cls(
            target_url=config.site.target_url,
            headless=config.headless,
            browser_type=browser.browser,
            viewport_width=browser.viewport_width,
            viewport_height=browser.viewport_height,
            user_agent=browser.user_agent,
            locale=browser.locale,
            timezone_id=browser.timezone_id,
            navigation_timeout_ms=browser.navigation_timeout_ms,
            action_timeout_ms=browser.action_timeout_ms,
            unit_select_timeout_ms=browser.unit_select_timeout_ms,
            settle_delay_ms=browser.settle_delay_ms,
            blocked_resource_types=browser.blocked_resource_types,
            screenshots_path=browser.screenshots_path,
            screenshots_on_error=browser.screenshots_on_error,
        )

    @property
    def name(self) -> str:
        return "playwright"

    @property
    def page(self) -> Page:
        if self._page is None:
            raise TransientStepError("Browser session is not open", step="INIT")
        return self._page

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """Launch the browser and open a fresh context and page."""
        self._playwright = await async_playwright().start()

        if self.browser_type == "firefox":
            browser_launcher = self._playwright.firefox
        elif self.browser_type == "webkit":
            browser_launcher = self._playwright.webkit
        else:
            browser_launcher = self._playwright.chromium

        launch_args = [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
            f"--window-size={self.viewport_width},{self.viewport_height}",
            "--disable-blink-features=AutomationControlled",
            "--disable-popup-blocking",
        ]

        self._browser = await browser_launcher.launch(
            headless=self.headless,
            args=launch_args if self.browser_type == "chromium" else [],
        )
        logger.info(f"Launched {self.browser_type} browser (headless={self.headless})")

        self._context = await self._browser.new_context(
            viewport={"width": self.viewport_width, "height": self.viewport_height},
            user_agent=self.user_agent,
            locale=self.locale,
            timezone_id=self.timezone_id,
        )
        self._context.set_default_timeout(self.action_timeout_ms)
        self._context.set_default_navigation_timeout(self.navigation_timeout_ms)

        # Context-level routing also covers the popup page
        if self.blocked_resource_types:
            await self._context.route("**/*", self._route_request)

        self._page = await self._context.new_page()

    async def _route_request(self, route: Route) -> None:
        if route.request.resource_type in self.blocked_resource_types:
            await route.abort()
        else:
            await route.continue_()

    async def close(self) -> None:
        """Close browser and clean up resources."""
        if self._context:
            await self._context.close()
            self._context = None
            self._page = None

        if self._browser:
            await self._browser.close()
            self._browser = None

        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

        logger.info("Playwright session closed")

    async def _capture_screenshot(self, prefix: str = "error") -> str | None:
        """Capture screenshot for debugging."""
        if not self.screenshots_on_error or self._page is None or self._page.is_closed():
            return None

        try:
            self.screenshots_path.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filepath = self.screenshots_path / f"{prefix}_{timestamp}.png"

            await self._page.screenshot(path=str(filepath), full_page=True)
            logger.info(f"Screenshot saved: {filepath}")

            return str(filepath)
        except Exception as e:
            logger.warning(f"Failed to capture screenshot: {e}")
            return None

    async def _step_failed(self, step: str, message: str, cause: Exception) -> TransientStepError:
        await self._capture_screenshot(step.lower())
        return TransientStepError(message, step=step, cause=cause)

    # -------------------------------------------------------------------------
    # Authentication and entry point
    # -------------------------------------------------------------------------

    async def open_login_page(self) -> None:
        try:
            await self.page.goto(self.target_url, wait_until="networkidle")
        except PlaywrightTimeoutError as e:
            raise await self._step_failed("NAVIGATE", f"Login page did not load: {self.target_url}", e) from e

    async def login(self, login: str, password: str, *, use_email_field: bool) -> None:
        page = self.page
        field = EMAIL_FIELD if use_email_field else USER_FIELD

        try:
            await page.locator(field).fill(login)
            await page.locator(PASSWORD_FIELD).fill(password)

            async with page.expect_navigation(
                wait_until="networkidle",
                timeout=self.navigation_timeout_ms,
            ):
                await page.locator(LOGIN_BUTTON).click()
        except PlaywrightTimeoutError as e:
            await self._capture_screenshot("login")
            raise AuthenticationError("Login navigation timed out", cause=e) from e

        # The portal re-renders the login form when the credential is rejected
        if await page.locator(LOGIN_BUTTON).count() > 0:
            await self._capture_screenshot("login")
            raise AuthenticationError("Credential rejected by the portal")

        await page.wait_for_timeout(LOGIN_SETTLE_MS)

    async def open_entry_point(self) -> None:
        page = self.page
        assert self._context is not None

        access_button = page.locator(EXAMS_ACCESS_BUTTON)
        try:
            await access_button.wait_for(state="attached")
        except PlaywrightTimeoutError as e:
            raise await self._step_failed(
                "NAVIGATE", f"Exams access button not found: {EXAMS_ACCESS_BUTTON}", e
            ) from e

        try:
            new_page: Page | None = None
            try:
                async with self._context.expect_page(timeout=POPUP_TIMEOUT_MS) as page_info:
                    await self._click_exams_button(access_button)
                new_page = await page_info.value
            except PlaywrightTimeoutError:
                logger.debug("No popup opened for the assessments system, staying on the current page")

            if new_page is not None:
                await new_page.wait_for_load_state("domcontentloaded")
                self._page = new_page
            else:
                await page.wait_for_load_state("networkidle")

            page = self.page
            logger.debug(f"Assessments system URL: {page.url}")

            results_menu = page.locator("span").filter(has_text=RESULTS_MENU_TEXT).first
            await results_menu.wait_for(state="visible")
            await results_menu.hover()
            await results_menu.dispatch_event("mouseenter")
            await results_menu.dispatch_event("mouseover")

            assessments_link = page.locator("a").filter(has_text=ASSESSMENTS_LINK_TEXT).first
            await assessments_link.wait_for(state="attached", timeout=LINK_ATTACH_TIMEOUT_MS)
            href = await assessments_link.get_attribute("href")
        except PlaywrightTimeoutError as e:
            raise await self._step_failed("NAVIGATE", "Assessments menu did not render", e) from e

        if not href:
            raise TransientStepError("Assessments link has no href", step="NAVIGATE")

        try:
            if href.startswith("http") or href.startswith("/"):
                await page.goto(urljoin(page.url, href))
            else:
                await assessments_link.click()
                await page.wait_for_load_state("networkidle")
        except PlaywrightTimeoutError as e:
            raise await self._step_failed("NAVIGATE", "Assessments page did not load", e) from e

    async def _click_exams_button(self, access_button: Locator) -> None:
        # RichFaces overlays transparent spans on the button
        try:
            await access_button.click(force=True)
        except PlaywrightTimeoutError as e:
            raise await self._step_failed(
                "NAVIGATE", f"Clicking the exams access button timed out: {EXAMS_ACCESS_BUTTON}", e
            ) from e

    # -------------------------------------------------------------------------
    # Periods and units
    # -------------------------------------------------------------------------

    async def _read_options(self, select: Locator) -> list[SelectOption]:
        rows: list[dict[str, Any]] = await select.locator("option").evaluate_all(_READ_OPTIONS_JS)
        return [SelectOption(value=row["value"], label=row["label"]) for row in rows]

    async def list_periods(self) -> list[SelectOption]:
        select = self.page.locator(PERIOD_SELECT)
        try:
            await select.wait_for(state="attached")
        except PlaywrightTimeoutError as e:
            raise await self._step_failed("ANALYZING", "Period selector not found", e) from e
        return await self._read_options(select)

    async def current_period(self) -> str:
        return await self.page.locator(PERIOD_SELECT).input_value()

    async def select_period(self, value: str) -> None:
        page = self.page
        try:
            await page.locator(PERIOD_SELECT).select_option(value)
            await page.wait_for_load_state("networkidle")
        except PlaywrightTimeoutError as e:
            raise await self._step_failed("PROCESSING", f"Selecting period {value} timed out", e) from e
        await page.wait_for_timeout(self.settle_delay_ms)

    async def list_units(self) -> list[SelectOption]:
        select = self.page.locator(UNIT_SELECT)
        try:
            await select.wait_for(state="visible")
        except PlaywrightTimeoutError as e:
            raise await self._step_failed("ANALYZING", "Exam selector not found", e) from e
        return await self._read_options(select)

    async def select_unit(self, value: str) -> None:
        page = self.page
        try:
            await page.locator(UNIT_SELECT).select_option(value, timeout=self.unit_select_timeout_ms)
            await page.wait_for_load_state("networkidle", timeout=self.unit_select_timeout_ms)
        except PlaywrightTimeoutError as e:
            raise await self._step_failed("PROCESSING", f"Selecting exam {value} timed out", e) from e
        await page.wait_for_timeout(self.settle_delay_ms)

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def _item_buttons(self) -> Locator:
        return self.page.locator("button").filter(has_text=ITEM_BUTTON_RE)

    async def wait_for_items(self, timeout_ms: int) -> bool:
        first = self.page.locator("button").filter(has_text=FIRST_ITEM_BUTTON_RE).first
        try:
            await first.wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    async def list_items(self) -> list[str]:
        buttons = await self._item_buttons().all()
        return [(await button.inner_text()).strip() for button in buttons]

    async def open_item(self, index: int, *, force: bool = False) -> None:
        page = self.page
        buttons = await self._item_buttons().all()
        if index >= len(buttons):
            raise TransientStepError(f"Question button {index} is gone", step="PROCESSING")

        try:
            await buttons[index].click(force=force)
            await page.wait_for_load_state("networkidle")
        except PlaywrightTimeoutError as e:
            raise await self._step_failed("PROCESSING", f"Opening question {index + 1} timed out", e) from e
        await page.wait_for_timeout(self.settle_delay_ms)

    async def wait_for_item_content(self, timeout_ms: int) -> bool:
        statement = self.page.locator(STATEMENT_REGION).first
        try:
            await statement.wait_for(state="visible", timeout=timeout_ms)
        except PlaywrightTimeoutError:
            return False
        return True

    async def read_item(self, label: str) -> RawItem:
        page = self.page
        try:
            statement = await page.locator(STATEMENT_REGION).first.inner_text()

            justification: str | None = None
            blockquote = page.locator(JUSTIFICATION_REGION)
            if await blockquote.count() > 0:
                justification = await blockquote.first.inner_text()

            alternatives_html = await page.locator(ALTERNATIVES_REGION).first.inner_html()
            images: list[str] = await page.locator(IMAGES).evaluate_all(_READ_IMAGES_JS)
        except PlaywrightTimeoutError as e:
            raise await self._step_failed("PROCESSING", f"Reading question {label} timed out", e) from e

        return RawItem(
            label=label,
            statement=statement,
            alternatives_html=alternatives_html,
            justification=justification,
            images=tuple(images),
        )
