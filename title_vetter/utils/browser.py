from __future__ import annotations

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncContextManager, AsyncIterator, Callable, Optional, Sequence

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

logger = logging.getLogger(__name__)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36",
)
VIEWPORTS = (
    {"width": 1920, "height": 1080},
    {"width": 1366, "height": 768},
    {"width": 1280, "height": 720},
    {"width": 1440, "height": 900},
    {"width": 1536, "height": 864},
)
TIMEZONES = (
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
    "America/Phoenix",
)
GEOLOCATIONS = (
    {"latitude": 40.7128, "longitude": -74.0060},
    {"latitude": 41.8781, "longitude": -87.6298},
    {"latitude": 34.0522, "longitude": -118.2437},
    {"latitude": 29.7604, "longitude": -95.3698},
    {"latitude": 39.9526, "longitude": -75.1652},
)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--no-first-run",
    "--no-default-browser-check",
]

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
if (window.chrome) { delete window.chrome.runtime; }
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 4 });
Object.defineProperty(navigator, 'deviceMemory', { get: () => 8 });
Object.defineProperty(screen, 'colorDepth', { get: () => 24 });
Object.defineProperty(screen, 'pixelDepth', { get: () => 24 });
"""

CONSENT_SELECTORS = (
    'button:has-text("Accept all")',
    'button:has-text("I agree")',
)

CHALLENGE_SELECTORS = (
    "text=Access denied",
    "text=Captcha",
    "text=Please verify",
    "text=Too many requests",
    "text=Unusual traffic",
    "[id*=captcha]",
    "[class*=captcha]",
    "[id*=challenge]",
    "[class*=challenge]",
)


@dataclass(frozen=True)
class Fingerprint:
    user_agent: str
    viewport: dict
    timezone_id: str
    geolocation: dict
    device_scale_factor: int


def random_fingerprint(rng: random.Random | None = None) -> Fingerprint:
    rng = rng or random.Random()
    return Fingerprint(
        user_agent=rng.choice(USER_AGENTS),
        viewport=dict(rng.choice(VIEWPORTS)),
        timezone_id=rng.choice(TIMEZONES),
        geolocation=dict(rng.choice(GEOLOCATIONS)),
        device_scale_factor=rng.choice((1, 2)),
    )


class BrowserSession:
    """Narrow browser capability used by the social crawler."""

    async def navigate(self, url: str, timeout_ms: int) -> None:
        raise NotImplementedError

    async def extract_links(self, selector: str) -> list[str]:
        raise NotImplementedError

    async def screenshot(self) -> bytes:
        raise NotImplementedError

    async def accept_consent(self) -> bool:
        raise NotImplementedError

    async def is_challenged(self) -> bool:
        raise NotImplementedError

    async def wait_for_any(self, selectors: Sequence[str], timeout_ms: int) -> bool:
        raise NotImplementedError

    async def simulate_human(self, rng: random.Random) -> None:
        raise NotImplementedError


SessionFactory = Callable[[Fingerprint], AsyncContextManager[BrowserSession]]


class PlaywrightSession(BrowserSession):
    def __init__(self, page) -> None:
        self.page = page

    async def navigate(self, url: str, timeout_ms: int) -> None:
        await self.page.goto(url, wait_until="networkidle", timeout=timeout_ms)

    async def extract_links(self, selector: str) -> list[str]:
        return await self.page.eval_on_selector_all(selector, "els => els.map(e => e.href)")

    async def screenshot(self) -> bytes:
        return await self.page.screenshot(type="png", full_page=True)

    async def accept_consent(self) -> bool:
        for selector in CONSENT_SELECTORS:
            button = self.page.locator(selector).first
            if await button.count() and await button.is_visible():
                await button.click()
                await self.page.wait_for_timeout(1000)
                return True
        return False

    async def is_challenged(self) -> bool:
        for selector in CHALLENGE_SELECTORS:
            if await self.page.locator(selector).count():
                return True
        return False

    async def wait_for_any(self, selectors: Sequence[str], timeout_ms: int) -> bool:
        for selector in selectors:
            try:
                await self.page.wait_for_selector(selector, timeout=timeout_ms)
                return True
            except PlaywrightTimeoutError:
                continue
        return False

    async def simulate_human(self, rng: random.Random) -> None:
        viewport = self.page.viewport_size or {"width": 1280, "height": 720}
        for _ in range(rng.randint(1, 3)):
            await self.page.mouse.move(
                rng.uniform(0, viewport["width"]),
                rng.uniform(0, viewport["height"]),
                steps=rng.randint(5, 9),
            )
            await asyncio.sleep(rng.uniform(0.1, 0.4))
        distance = rng.randint(200, 700)
        await self.page.evaluate(f"window.scrollBy({{top: {distance}, behavior: 'smooth'}})")
        await asyncio.sleep(rng.uniform(0.5, 1.5))


@asynccontextmanager
async def playwright_session(fingerprint: Fingerprint, headless: bool = True) -> AsyncIterator[BrowserSession]:
    """Launch an isolated browser with the given fingerprint; torn down on exit."""
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=headless, args=LAUNCH_ARGS)
        context = None
        try:
            context = await browser.new_context(
                viewport=fingerprint.viewport,
                user_agent=fingerprint.user_agent,
                locale="en-US",
                timezone_id=fingerprint.timezone_id,
                geolocation=fingerprint.geolocation,
                permissions=["geolocation"],
                device_scale_factor=fingerprint.device_scale_factor,
                java_script_enabled=True,
                extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
            )
            await context.add_init_script(STEALTH_SCRIPT)
            page = await context.new_page()
            yield PlaywrightSession(page)
        finally:
            if context is not None:
                await context.close()
            await browser.close()
            logger.debug("browser session closed", extra={"user_agent": fingerprint.user_agent})


def save_screenshot(directory: Optional[str], name: str, data: bytes) -> Optional[str]:
    if not directory:
        return None
    path = Path(directory) / f"{name}.png"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    return str(path)
