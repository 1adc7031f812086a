"""HTML to PDF / PNG rendering through a pool of headless Chromium browsers.

Each render opens a short-lived page in a pooled browser, loads the HTML,
waits for web fonts and every ``<img>`` to settle, captures, then closes the
page whether or not the capture succeeded. Browsers are launched lazily and
reused; a browser found disconnected is relaunched on the next acquire.

There is no retry here: a load timeout or browser crash surfaces as
``PDFRenderError`` and the caller decides what to do.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from core.config import Settings, get_settings
from schemas import BrowserPoolStatus, PDFOptions, ScreenshotOptions

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-background-networking",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-breakpad",
    "--disable-extensions",
    "--disable-renderer-backgrounding",
    "--disable-sync",
]

# networkidle alone does not guarantee glyphs are shaped or images decoded
_WAIT_FOR_ASSETS_JS = """
async () => {
  await document.fonts.ready;
  await Promise.all(
    Array.from(document.images).map((img) => {
      if (img.complete) return Promise.resolve();
      return new Promise((resolve) => {
        img.addEventListener('load', resolve);
        img.addEventListener('error', resolve);
      });
    })
  );
}
"""

BrowserLauncher = Callable[[], Awaitable[Browser]]


class PDFRenderError(Exception):
    """Raised when the browser fails to launch, load, or capture a document."""


class BrowserPool:
    """Fixed-size pool of lazily launched Chromium processes.

    ``acquire()`` hands out one browser at a time per slot; callers beyond
    ``size`` wait until a slot is released.
    """

    def __init__(
        self,
        size: int,
        *,
        launch_timeout_ms: int = 60000,
        launcher: BrowserLauncher | None = None,
    ) -> None:
        if size < 1:
            raise ValueError("Browser pool size must be at least 1")
        self.size = size
        self._launch_timeout_ms = launch_timeout_ms
        self._launcher = launcher or self._launch_chromium
        self._playwright: Playwright | None = None
        self._start_lock = asyncio.Lock()
        self._slots: asyncio.Queue[Browser | None] = asyncio.Queue()
        for _ in range(size):
            self._slots.put_nowait(None)
        self._launched: set[Browser] = set()
        self._in_use = 0

    async def _launch_chromium(self) -> Browser:
        async with self._start_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=True,
            args=CHROMIUM_ARGS,
            timeout=self._launch_timeout_ms,
        )

    async def _launch(self) -> Browser:
        try:
            browser = await self._launcher()
        except PlaywrightError as e:
            logger.error("pdf.browser.launch_failed", exc_info=True)
            raise PDFRenderError(f"Failed to launch browser: {e}") from e
        self._launched.add(browser)
        logger.info(
            "pdf.browser.launched",
            extra={"browsers_launched": len(self._launched), "pool_size": self.size},
        )
        return browser

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Browser]:
        """Borrow a connected browser, launching or relaunching as needed."""
        browser = await self._slots.get()
        self._in_use += 1
        try:
            if browser is not None and not browser.is_connected():
                logger.warning("pdf.browser.disconnected")
                self._launched.discard(browser)
                browser = None
            if browser is None:
                browser = await self._launch()
            yield browser
        finally:
            self._in_use -= 1
            self._slots.put_nowait(browser)

    async def close(self) -> None:
        """Close every launched browser. The pool relaunches lazily afterwards."""
        browsers = list(self._launched)
        self._launched.clear()
        for browser in browsers:
            try:
                await browser.close()
            except PlaywrightError:
                logger.warning("pdf.browser.close_failed", exc_info=True)

        # Idle slots forget their (now closed) browsers; busy slots are
        # detected as disconnected when next acquired.
        idle = self._slots.qsize()
        for _ in range(idle):
            self._slots.get_nowait()
            self._slots.put_nowait(None)

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        if browsers:
            logger.info(
                "pdf.browser.pool_closed", extra={"browsers_closed": len(browsers)}
            )

    def status(self) -> BrowserPoolStatus:
        return BrowserPoolStatus(
            size=self.size,
            launched=len(self._launched),
            in_use=self._in_use,
        )


class PDFRenderer:
    """Render complete HTML documents to PDF bytes or PNG screenshots.

    Constructed once at startup; ``close()`` must be awaited at shutdown.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        pool: BrowserPool | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._viewport = {
            "width": settings.pdf_viewport_width,
            "height": settings.pdf_viewport_height,
        }
        self._device_scale_factor = settings.pdf_device_scale_factor
        self._load_timeout_ms = settings.pdf_load_timeout_ms
        self.pool = pool or BrowserPool(
            settings.browser_pool_size,
            launch_timeout_ms=settings.browser_launch_timeout_ms,
        )

    @staticmethod
    def pdf_arguments(options: PDFOptions) -> dict[str, Any]:
        """Translate ``PDFOptions`` into ``Page.pdf`` keyword arguments."""
        return {
            "format": options.format,
            "landscape": options.orientation == "landscape",
            "print_background": options.print_background,
            "margin": options.margin.model_dump(),
            "display_header_footer": options.display_header_footer,
            "prefer_css_page_size": options.prefer_css_page_size,
        }

    async def generate_pdf(self, html: str, options: PDFOptions | None = None) -> bytes:
        """Render ``html`` (a complete document) to PDF bytes.

        Raises:
            PDFRenderError: launch failure, load timeout, or capture failure.
        """
        arguments = self.pdf_arguments(options or PDFOptions())

        async def capture(page: Page) -> bytes:
            return await page.pdf(**arguments)

        return await self._render(html, capture, self._viewport, kind="pdf")

    async def generate_screenshot(
        self, html: str, options: ScreenshotOptions | None = None
    ) -> bytes:
        """Render ``html`` to a PNG, full page by default."""
        options = options or ScreenshotOptions()
        viewport = {
            "width": options.width or self._viewport["width"],
            "height": options.height or self._viewport["height"],
        }

        async def capture(page: Page) -> bytes:
            return await page.screenshot(full_page=options.full_page, type=options.type)

        return await self._render(html, capture, viewport, kind="screenshot")

    async def _render(
        self,
        html: str,
        capture: Callable[[Page], Awaitable[bytes]],
        viewport: dict[str, int],
        *,
        kind: str,
    ) -> bytes:
        async with self.pool.acquire() as browser:
            page: Page | None = None
            try:
                page = await browser.new_page(
                    viewport=viewport,
                    device_scale_factor=self._device_scale_factor,
                )
                await page.set_content(
                    html, wait_until="load", timeout=self._load_timeout_ms
                )
                await page.wait_for_load_state(
                    "networkidle", timeout=self._load_timeout_ms
                )
                await page.evaluate(_WAIT_FOR_ASSETS_JS)
                return await capture(page)
            except PlaywrightError as e:
                logger.error(
                    "pdf.render.failed",
                    exc_info=True,
                    extra={"kind": kind, "html_length": len(html)},
                )
                raise PDFRenderError(f"Failed to render {kind}: {e}") from e
            finally:
                if page is not None:
                    try:
                        await page.close()
                    except PlaywrightError:
                        logger.warning("pdf.page.close_failed", exc_info=True)

    async def close(self) -> None:
        await self.pool.close()

    def status(self) -> BrowserPoolStatus:
        return self.pool.status()
