from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import urllib.error
import urllib.request
from collections.abc import Iterator
from pathlib import Path
from typing import Any, cast

from playwright.async_api import BrowserContext, Frame, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..constants import CHROME_BIN_ENV, INJECTED_SCRIPTS_BASE, WEB_CLIENT_URL
from ..exceptions import RemoteSessionError
from ..remote import RemoteEventSink
from ..session_config import SessionOptions

logger = logging.getLogger(__name__)

_REGISTER_LISTENERS_JS = """
() => {
    window.AuthStore.AppState.on('change:state', (_AppState, state) => {
        window.onAuthAppStateChangedEvent(state);
    });
    window.AuthStore.AppState.on('change:hasSynced', () => {
        window.onAppStateHasSyncedEvent();
    });
    window.AuthStore.Cmd.on('offline_progress_update', () => {
        window.onOfflineProgressUpdateEvent(
            window.AuthStore.OfflineMessageHandler.getOfflineDeliveryProgress()
        );
    });
    window.AuthStore.Cmd.on('logout', async () => {
        await window.onLogoutEvent();
    });
}
"""

_START_QR_JS = """
async () => {
    const utils = window.AuthStore.RegistrationUtils;
    const registrationInfo = await utils.waSignalStore.getRegistrationInfo();
    const noiseKeyPair = await utils.waNoiseInfo.get();
    const staticKeyB64 = window.AuthStore.Base64Tools.encodeB64(noiseKeyPair.staticKeyPair.pubKey);
    const identityKeyB64 = window.AuthStore.Base64Tools.encodeB64(registrationInfo.identityKeyPair.pubKey);
    const advSecretKey = await utils.getADVSecretKey();
    const platform = utils.DEVICE_PLATFORM;
    const getQR = (ref) => ref + ',' + staticKeyB64 + ',' + identityKeyB64 + ',' + advSecretKey + ',' + platform;

    window.onQRChangedEvent(getQR(window.AuthStore.Conn.ref));
    window.AuthStore.Conn.on('change:ref', (_, ref) => { window.onQRChangedEvent(getQR(ref)); });
}
"""

_PAIRING_CODE_JS = """
async ([phoneNumber, showNotification]) => {
    while (!window.AuthStore.PairingCodeLinkUtils) {
        await new Promise(resolve => setTimeout(resolve, 250));
    }
    const utils = window.AuthStore.PairingCodeLinkUtils;
    utils.setPairingType('ALT_DEVICE_LINKING');
    await utils.initializeAltDeviceLinking();
    return await utils.startAltLinkingFlow(phoneNumber, showNotification);
}
"""

_SEND_MESSAGE_JS = """
async ([chatId, content, options]) => {
    const chat = await window.WWebJS.getChat(chatId, { getAsModel: false });
    if (!chat) return null;
    const msg = await window.WWebJS.sendMessage(chat, content, options);
    return msg?.id?._serialized || msg?.id?.id || null;
}
"""


def extract_function_body(js: str, name: str) -> str:
    """
    Return the body of `exports.<name> = ... { ... }` from a CommonJS module,
    located by brace counting from the first `{` after the export.
    """

    start = js.find(f"exports.{name}")
    if start < 0:
        raise RemoteSessionError(f"function {name} not found")
    brace = js.find("{", start)
    if brace < 0:
        raise RemoteSessionError(f"opening brace not found for {name}")

    depth = 1
    i = brace + 1
    while i < len(js) and depth > 0:
        ch = js[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        i += 1
    return js[brace + 1 : i - 1]


@contextlib.contextmanager
def _remote_errors() -> Iterator[None]:
    try:
        yield
    except PlaywrightError as e:
        raise RemoteSessionError(e.message) from e


def _fetch_text(url: str, timeout_s: float) -> str:
    req = urllib.request.Request(url, headers={"User-Agent": "pywweb/0.1"})
    try:
        with urllib.request.urlopen(req, timeout=timeout_s) as resp:
            return cast(bytes, resp.read()).decode("utf-8")
    except urllib.error.HTTPError as e:
        raise RemoteSessionError(f"script fetch http error {e.code}: {url}") from e
    except Exception as e:
        raise RemoteSessionError(f"script fetch failed: {e}") from e


class BrowserSession:
    """
    Playwright-driven Chromium page hosting the web client.

    Session state persists in the browser profile at `options.session_path`.
    """

    def __init__(self, options: SessionOptions, *, fetch_timeout_s: float = 30.0) -> None:
        self.options = options
        self.fetch_timeout_s = fetch_timeout_s
        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RemoteSessionError("browser session is not open")
        return self._page

    async def open(self, sink: RemoteEventSink) -> None:
        profile = Path(self.options.session_path).expanduser()
        await asyncio.to_thread(profile.mkdir, parents=True, exist_ok=True)

        with _remote_errors():
            self._playwright = await async_playwright().start()
            self._context = await self._playwright.chromium.launch_persistent_context(
                str(profile),
                executable_path=os.environ.get(CHROME_BIN_ENV) or None,
                headless=self.options.headless,
                args=list(self.options.browser_args),
                user_agent=self.options.user_agent,
                bypass_csp=True,
            )
            page = await self._context.new_page()
            self._page = page

            logger.info("navigating to %s", WEB_CLIENT_URL)
            await page.goto(WEB_CLIENT_URL, wait_until="load", timeout=0)

            logger.info("waiting for the web client to load")
            await page.wait_for_function("window.Debug?.VERSION != undefined", timeout=0)

            logger.info("injecting auth store")
            await self._inject("AuthStore/AuthStore.js", "ExposeAuthStore")

            await page.expose_function("onAuthAppStateChangedEvent", sink.on_state_changed)
            await page.expose_function("onAppStateHasSyncedEvent", sink.on_synced)
            await page.expose_function("onOfflineProgressUpdateEvent", sink.on_offline_progress)
            await page.expose_function("onQRChangedEvent", sink.on_qr)
            await page.expose_function("onLogoutEvent", sink.on_logout)
            await page.evaluate(_REGISTER_LISTENERS_JS)

        async def on_frame_navigated(frame: Frame) -> None:
            if frame is page.main_frame:
                await sink.on_navigated(frame.url)

        page.on("framenavigated", on_frame_navigated)

    async def close(self) -> None:
        context, pw = self._context, self._playwright
        self._page = None
        self._context = None
        self._playwright = None
        try:
            if context is not None:
                with _remote_errors():
                    await context.close()
        finally:
            if pw is not None:
                await pw.stop()

    async def get_state(self) -> str:
        with _remote_errors():
            return cast(str, await self.page.evaluate("() => window.AuthStore.AppState.state"))

    async def has_synced(self) -> bool:
        with _remote_errors():
            return bool(await self.page.evaluate("() => window.AuthStore.AppState.hasSynced"))

    async def start_qr(self) -> None:
        with _remote_errors():
            await self.page.evaluate(_START_QR_JS)

    async def refresh_qr(self) -> None:
        with _remote_errors():
            await self.page.evaluate("() => window.Store?.Cmd?.refreshQR?.()")

    async def request_pairing_code(self, phone_number: str, show_notification: bool) -> str:
        with _remote_errors():
            code = await self.page.evaluate(_PAIRING_CODE_JS, [phone_number, show_notification])
        return str(code)

    async def load_store(self) -> None:
        logger.info("injecting store and utils")
        await self._inject("Store.js", "ExposeStore")
        await self._inject("Utils.js", "LoadUtils")

    async def send_message(
        self, chat_id: str, content: Any, options: dict[str, Any]
    ) -> str | None:
        with _remote_errors():
            msg_id = await self.page.evaluate(_SEND_MESSAGE_JS, [chat_id, content, options])
        return str(msg_id) if msg_id else None

    async def _inject(self, script: str, function_name: str) -> None:
        url = f"{INJECTED_SCRIPTS_BASE}/{script}"
        source = await asyncio.to_thread(_fetch_text, url, self.fetch_timeout_s)
        body = extract_function_body(source, function_name)
        with _remote_errors():
            await self.page.evaluate(f"() => {{ {body} }}")
