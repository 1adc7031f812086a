"""Tests for the Chromium-backed PDF renderer.

No browser is launched: the pool is given a launcher that returns mocks,
so these tests check the page lifecycle, argument mapping and pool
bookkeeping rather than real output.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from core.config import Settings
from rendering.pdf_renderer import BrowserPool, PDFRenderer, PDFRenderError
from schemas import PDFMargin, PDFOptions, ScreenshotOptions
from services.certificates_service import CERTIFICATE_PDF_OPTIONS
from tests.conftest import FAKE_PDF, FAKE_PNG

pytestmark = pytest.mark.unit


def _page() -> AsyncMock:
    page = AsyncMock()
    page.pdf.return_value = FAKE_PDF
    page.screenshot.return_value = FAKE_PNG
    return page


def _browser(page: AsyncMock | None = None) -> MagicMock:
    browser = MagicMock()
    browser.is_connected.return_value = True
    browser.new_page = AsyncMock(return_value=page or _page())
    browser.close = AsyncMock()
    return browser


def _pool(browsers: list[MagicMock], size: int = 1) -> tuple[BrowserPool, AsyncMock]:
    launcher = AsyncMock(side_effect=browsers)
    return BrowserPool(size, launcher=launcher), launcher


class TestPdfArguments:
    def test_certificate_options_are_a4_landscape(self):
        args = PDFRenderer.pdf_arguments(CERTIFICATE_PDF_OPTIONS)

        assert args["format"] == "A4"
        assert args["landscape"] is True
        assert args["print_background"] is True
        assert args["margin"] == {
            "top": "0mm",
            "right": "0mm",
            "bottom": "0mm",
            "left": "0mm",
        }

    def test_defaults_are_portrait(self):
        args = PDFRenderer.pdf_arguments(PDFOptions())
        assert args["landscape"] is False
        assert args["display_header_footer"] is False

    def test_custom_margin_passes_through(self):
        options = PDFOptions(margin=PDFMargin(top="10mm", bottom="5mm"))
        assert PDFRenderer.pdf_arguments(options)["margin"]["top"] == "10mm"


class TestGeneratePdf:
    async def test_page_lifecycle(self, test_settings: Settings):
        page = _page()
        pool, _ = _pool([_browser(page)])
        renderer = PDFRenderer(test_settings, pool=pool)

        result = await renderer.generate_pdf(
            "<!DOCTYPE html><p>x</p>", CERTIFICATE_PDF_OPTIONS
        )

        assert result == FAKE_PDF
        page.set_content.assert_awaited_once()
        assert page.set_content.await_args.kwargs["wait_until"] == "load"
        page.wait_for_load_state.assert_awaited_once()
        assert page.wait_for_load_state.await_args.args == ("networkidle",)
        page.evaluate.assert_awaited_once()
        page.pdf.assert_awaited_once_with(
            **PDFRenderer.pdf_arguments(CERTIFICATE_PDF_OPTIONS)
        )
        page.close.assert_awaited_once()

    async def test_uses_configured_viewport(self, test_settings: Settings):
        browser = _browser()
        pool, _ = _pool([browser])
        renderer = PDFRenderer(test_settings, pool=pool)

        await renderer.generate_pdf("<p>x</p>")

        kwargs = browser.new_page.await_args.kwargs
        assert kwargs["viewport"] == {
            "width": test_settings.pdf_viewport_width,
            "height": test_settings.pdf_viewport_height,
        }
        assert kwargs["device_scale_factor"] == test_settings.pdf_device_scale_factor

    async def test_page_closed_when_load_fails(self, test_settings: Settings):
        page = _page()
        page.set_content.side_effect = PlaywrightError("Timeout 30000ms exceeded")
        pool, _ = _pool([_browser(page)])
        renderer = PDFRenderer(test_settings, pool=pool)

        with pytest.raises(PDFRenderError, match="Failed to render pdf"):
            await renderer.generate_pdf("<p>x</p>")

        page.close.assert_awaited_once()
        page.pdf.assert_not_awaited()
        assert renderer.status().in_use == 0

    async def test_page_close_failure_does_not_mask_result(
        self, test_settings: Settings
    ):
        page = _page()
        page.close.side_effect = PlaywrightError("Target closed")
        pool, _ = _pool([_browser(page)])
        renderer = PDFRenderer(test_settings, pool=pool)

        assert await renderer.generate_pdf("<p>x</p>") == FAKE_PDF

    async def test_launch_failure_raises_render_error(self, test_settings: Settings):
        launcher = AsyncMock(side_effect=PlaywrightError("Executable doesn't exist"))
        renderer = PDFRenderer(test_settings, pool=BrowserPool(1, launcher=launcher))

        with pytest.raises(PDFRenderError, match="Failed to launch browser"):
            await renderer.generate_pdf("<p>x</p>")

        assert renderer.status().launched == 0

    async def test_concurrent_renders_keep_their_options(
        self, test_settings: Settings
    ):
        pages = [_page(), _page()]
        pool, launcher = _pool([_browser(pages[0]), _browser(pages[1])], size=2)
        renderer = PDFRenderer(test_settings, pool=pool)

        results = await asyncio.gather(
            *(
                renderer.generate_pdf(f"<p>{i}</p>", CERTIFICATE_PDF_OPTIONS)
                for i in range(6)
            )
        )

        assert results == [FAKE_PDF] * 6
        assert launcher.await_count <= 2
        calls = [c for page in pages for c in page.pdf.await_args_list]
        assert len(calls) == 6
        for call in calls:
            assert call.kwargs["format"] == "A4"
            assert call.kwargs["landscape"] is True


class TestGenerateScreenshot:
    async def test_full_page_png_with_custom_viewport(self, test_settings: Settings):
        page = _page()
        browser = _browser(page)
        pool, _ = _pool([browser])
        renderer = PDFRenderer(test_settings, pool=pool)

        result = await renderer.generate_screenshot(
            "<p>x</p>", ScreenshotOptions(width=800, height=600)
        )

        assert result == FAKE_PNG
        page.screenshot.assert_awaited_once_with(full_page=True, type="png")
        assert browser.new_page.await_args.kwargs["viewport"] == {
            "width": 800,
            "height": 600,
        }
        page.close.assert_awaited_once()

    async def test_capture_failure_raises(self, test_settings: Settings):
        page = _page()
        page.screenshot.side_effect = PlaywrightError("Target crashed")
        pool, _ = _pool([_browser(page)])
        renderer = PDFRenderer(test_settings, pool=pool)

        with pytest.raises(PDFRenderError, match="screenshot"):
            await renderer.generate_screenshot("<p>x</p>")
        page.close.assert_awaited_once()


class TestBrowserPool:
    def test_rejects_empty_pool(self):
        with pytest.raises(ValueError):
            BrowserPool(0)

    async def test_browser_is_reused(self):
        browser = _browser()
        pool, launcher = _pool([browser])

        async with pool.acquire() as first:
            pass
        async with pool.acquire() as second:
            pass

        assert first is second is browser
        assert launcher.await_count == 1

    async def test_waits_when_all_slots_busy(self):
        pool, _ = _pool([_browser()])

        async def borrow():
            async with pool.acquire() as browser:
                return browser

        async with pool.acquire():
            waiter = asyncio.create_task(borrow())
            await asyncio.sleep(0)
            assert not waiter.done()
            assert pool.status().in_use == 1

        assert await waiter is not None
        assert pool.status().in_use == 0

    async def test_relaunches_disconnected_browser(self):
        stale, fresh = _browser(), _browser()
        pool, launcher = _pool([stale, fresh])

        async with pool.acquire():
            pass
        stale.is_connected.return_value = False

        async with pool.acquire() as browser:
            assert browser is fresh

        assert launcher.await_count == 2
        assert pool.status().launched == 1

    async def test_close_closes_launched_browsers(self):
        browser = _browser()
        pool, launcher = _pool([browser, _browser()])

        async with pool.acquire():
            pass
        await pool.close()

        browser.close.assert_awaited_once()
        assert pool.status().launched == 0

        # Next acquire launches a new browser
        async with pool.acquire():
            pass
        assert launcher.await_count == 2

    async def test_status(self):
        pool, _ = _pool([_browser()], size=1)
        assert pool.status().model_dump() == {"size": 1, "launched": 0, "in_use": 0}

        async with pool.acquire():
            status = pool.status()
            assert status.launched == 1
            assert status.in_use == 1
