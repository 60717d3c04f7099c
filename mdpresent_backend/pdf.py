from __future__ import annotations

import asyncio
import logging

from playwright.async_api import async_playwright

logger = logging.getLogger(__name__)

# Give slide animations time to settle before printing.
DEFAULT_SETTLE_SECONDS = 1.0


async def html_to_pdf(html: str, settle_seconds: float = DEFAULT_SETTLE_SECONDS) -> bytes:
    """Print a full HTML page to an A4 PDF in headless Chromium."""
    async with async_playwright() as p:
        browser = await p.chromium.launch()
        try:
            page = await browser.new_page()
            await page.set_content(html, wait_until="networkidle")

            # Wait for web fonts if the template pulls any in.
            try:
                await page.evaluate(
                    """async () => { if (document.fonts && document.fonts.ready) { await document.fonts.ready; } }"""
                )
            except Exception:
                logger.debug("document.fonts.ready unavailable", exc_info=True)

            if settle_seconds > 0:
                await asyncio.sleep(settle_seconds)

            pdf_bytes = await page.pdf(format="A4", print_background=False)
        finally:
            await browser.close()

    logger.info("Generated PDF (%d bytes)", len(pdf_bytes))
    return pdf_bytes
