import itertools
import logging
import os
import time
from typing import Any, Dict, Optional

from selenium import webdriver
from selenium.common.exceptions import JavascriptException, WebDriverException
from selenium.webdriver.support.ui import WebDriverWait

from forcenext import config
from forcenext import host as sel
from forcenext.correlator import ResponseCorrelator
from forcenext.errors import ForceNextError
from forcenext.exchange import Exchange, hook_patterns
from forcenext.host import PlayerHost
from forcenext.observe import Disposer
from forcenext.page_hook import build_page_hook


# === BROWSER HANDLING --------------------------- ===
def _driver_service(browser: str):
    if browser == "firefox":
        from selenium.webdriver.firefox.service import Service
        from webdriver_manager.firefox import GeckoDriverManager

        path = config.DRIVER_PATH or GeckoDriverManager().install()
    else:
        from selenium.webdriver.chrome.service import Service
        from webdriver_manager.chrome import ChromeDriverManager

        path = config.DRIVER_PATH or ChromeDriverManager().install()
    if not os.path.exists(path):
        raise ForceNextError(f"Driver missing under {path}")
    return Service(executable_path=path)


def start_browser() -> webdriver.Remote:
    try:
        os.makedirs(config.PROFILE_DIR, exist_ok=True)

        if config.BROWSER == "firefox":
            options = webdriver.FirefoxOptions()
            options.set_preference("media.eme.enabled", True)
            options.set_preference("media.gmp-widevinecdm.enabled", True)
            options.set_preference("media.autoplay.default", 0)
            options.set_preference("media.block-autoplay-until-in-foreground", False)
            options.set_preference("media.autoplay.blocking_policy", 0)
            options.set_preference("full-screen-api.warning.timeout", 0)
            options.add_argument("-profile")
            options.add_argument(config.PROFILE_DIR)
            if config.HEADLESS:
                options.add_argument("-headless")
            driver = webdriver.Firefox(service=_driver_service("firefox"), options=options)
        else:
            options = webdriver.ChromeOptions()
            options.add_argument(f"--user-data-dir={config.PROFILE_DIR}")
            options.add_argument("--autoplay-policy=no-user-gesture-required")
            options.add_argument("--disable-blink-features=AutomationControlled")
            options.add_experimental_option("excludeSwitches", ["enable-automation"])
            if config.HEADLESS:
                options.add_argument("--headless=new")
            driver = webdriver.Chrome(service=_driver_service("chrome"), options=options)

        try:
            driver.maximize_window()
        except Exception:
            pass

        logging.info(f"Browser started. Browser: {config.BROWSER} | Profile: {config.PROFILE_DIR}")
        return driver
    except ForceNextError:
        raise
    except Exception as e:
        logging.error(f"Browser startup failed: {e}")
        raise ForceNextError("Browser startup failed")


def _document_ready(driver: webdriver.Remote) -> bool:
    return driver.execute_script("return document.readyState") == "complete"


def load_start_page(driver: webdriver.Remote, url: str = config.START_URL, attempts: int = 3) -> bool:
    """Open url and wait for the document; retried with a growing pause."""
    for attempt in range(1, attempts + 1):
        try:
            driver.get(url)
            WebDriverWait(driver, config.WAIT_TIMEOUT).until(_document_ready)
            return True
        except WebDriverException as e:
            logging.warning(f"Loading {url} failed ({attempt}/{attempts}): {e}")
            time.sleep(2 * attempt)
    logging.error(f"Giving up on {url}")
    return False


def driver_alive(driver: webdriver.Remote) -> bool:
    """True while the session still has a window that runs scripts."""
    try:
        return bool(driver.window_handles) and driver.execute_script("return 1") == 1
    except WebDriverException:
        return False


# === PLAYER HOST --------------------------- ===
_PLAYER_JS = "const p = document.querySelector(arguments[0]);"


class SeleniumHost(PlayerHost):
    """
    PlayerHost backed by a WebDriver session and the page hook.

    Subscriptions live on both sides: Python keeps the callbacks, the page keeps
    the MutationObservers/listeners. A subscription whose target is not in the
    page yet is retried on every pump; a new document (navigation) drops all
    page-side state, which pump() reports to the caller.
    """

    def __init__(self, driver, correlator: ResponseCorrelator):
        self.driver = driver
        self.correlator = correlator
        self.hook_script = self._build_hook()
        self._cdp_script_id: Optional[str] = None
        self._ids = itertools.count(1)
        self._observers: Dict[str, Dict[str, Any]] = {}
        self._listeners: Dict[str, Dict[str, Any]] = {}
        self._page: Optional[str] = None

    def _js(self, script: str, *args) -> Any:
        try:
            return self.driver.execute_script(script, *args)
        except JavascriptException as e:
            logging.debug(f"Script failed: {e}")
            return None

    # --- hook ---
    def _build_hook(self) -> str:
        return build_page_hook(hook_patterns(self.correlator.options), sel.PLAYER, config.HOLD_TIMEOUT_MS)

    def _register_early_hook(self) -> None:
        if config.BROWSER == "firefox":
            return
        try:
            if self._cdp_script_id is not None:
                self.driver.execute_cdp_cmd(
                    "Page.removeScriptToEvaluateOnNewDocument", {"identifier": self._cdp_script_id}
                )
                self._cdp_script_id = None
            result = self.driver.execute_cdp_cmd(
                "Page.addScriptToEvaluateOnNewDocument", {"source": self.hook_script}
            )
            self._cdp_script_id = (result or {}).get("identifier")
        except Exception as e:
            logging.warning(f"Early hook install failed, falling back to late injection: {e}")

    def install(self) -> None:
        self._register_early_hook()
        self.ensure_hook()

    def refresh_hook(self) -> bool:
        """Re-register the hook when the options changed which responses it holds.

        A document keeps the hook it was loaded with; the new one applies from the next load.
        """
        script = self._build_hook()
        if script == self.hook_script:
            return False
        self.hook_script = script
        self._register_early_hook()
        logging.info(f"Page hook updated, holding {hook_patterns(self.correlator.options)['hold']}")
        return True

    def ensure_hook(self) -> bool:
        return bool(self._js(self.hook_script + "\nreturn !!window.__fnx;"))

    def wait_for_hook(self, timeout_ms: int = config.HOOK_READY_WINDOW_MS) -> bool:
        end = time.time() + timeout_ms / 1000.0
        while time.time() < end:
            if self.ensure_hook():
                return True
            time.sleep(0.25)
        return False

    # --- subscriptions ---
    def observe(self, selector, callback, attributes=False, subtree=True) -> Disposer:
        sid = f"o{next(self._ids)}"
        self._observers[sid] = {
            "selector": selector,
            "attributes": attributes,
            "subtree": subtree,
            "callback": callback,
            "attached": False,
        }
        self._attach_observer(sid)
        return Disposer(lambda: self._unobserve(sid))

    def _attach_observer(self, sid: str) -> None:
        sub = self._observers.get(sid)
        if sub is None:
            return
        sub["attached"] = bool(
            self._js(
                "return window.__fnx ? window.__fnx.observe(arguments[0], arguments[1], arguments[2], arguments[3]) : false;",
                sid,
                sub["selector"],
                sub["attributes"],
                sub["subtree"],
            )
        )

    def _unobserve(self, sid: str) -> None:
        if self._observers.pop(sid, None) is not None:
            self._js("if (window.__fnx) window.__fnx.unobserve(arguments[0]);", sid)

    def listen(self, event, selector, callback) -> Disposer:
        sid = f"l{next(self._ids)}"
        self._listeners[sid] = {"event": event, "selector": selector, "callback": callback, "attached": False}
        self._attach_listener(sid)
        return Disposer(lambda: self._unlisten(sid))

    def _attach_listener(self, sid: str) -> None:
        sub = self._listeners.get(sid)
        if sub is None:
            return
        sub["attached"] = bool(
            self._js(
                "return window.__fnx ? window.__fnx.listen(arguments[0], arguments[1], arguments[2]) : false;",
                sid,
                sub["event"],
                sub["selector"],
            )
        )

    def _unlisten(self, sid: str) -> None:
        if self._listeners.pop(sid, None) is not None:
            self._js("if (window.__fnx) window.__fnx.unlisten(arguments[0]);", sid)

    def active_subscriptions(self) -> int:
        return len(self._observers) + len(self._listeners)

    # --- event pump ---
    def pump(self) -> bool:
        """Drain and dispatch page events. Returns True when a new document was detected."""
        batch = self._js(
            "return window.__fnx ? {page: window.__fnx.page, events: window.__fnx.drain()} : null;"
        )
        if not batch:
            self.ensure_hook()
            return False

        page_changed = batch.get("page") != self._page
        if page_changed:
            if self._page is not None:
                logging.info("New document detected")
            self._page = batch.get("page")
            for sub in self._observers.values():
                sub["attached"] = False
            for sub in self._listeners.values():
                sub["attached"] = False

        for event in batch.get("events") or []:
            self._dispatch(event)

        for sid in [k for k, v in self._observers.items() if not v["attached"]]:
            self._attach_observer(sid)
            # the target appearing is itself a change the subscriber has not seen
            if sid in self._observers and self._observers[sid]["attached"]:
                self._dispatch({"type": "mutation", "sub": sid})
        for sid in [k for k, v in self._listeners.items() if not v["attached"]]:
            self._attach_listener(sid)
        return page_changed

    def _dispatch(self, event: Dict[str, Any]) -> None:
        kind = event.get("type")
        if kind == "exchange":
            self._on_exchange(event)
            return
        if kind == "mutation":
            sub = self._observers.get(event.get("sub"))
        elif kind == "event":
            sub = self._listeners.get(event.get("sub"))
        else:
            return
        if sub is None:
            return
        try:
            if kind == "mutation":
                sub["callback"]()
            else:
                sub["callback"](event.get("event") or {})
        except Exception as e:
            logging.error(f"Handler for {kind} failed: {e}")

    def _on_exchange(self, raw: Dict[str, Any]) -> None:
        exchange = None
        try:
            exchange = Exchange.from_hook(raw)
            self.correlator.correlate(exchange)
        except Exception as e:
            logging.warning(f"Exchange from hook ignored: {e}")
        finally:
            if raw.get("held"):
                body = exchange.response.body if exchange is not None and exchange.modified else None
                self._js("if (window.__fnx) window.__fnx.reply(arguments[0], arguments[1]);", raw.get("id"), body)

    # --- queries ---
    def is_player_open(self) -> bool:
        return bool(
            self._js(
                _PLAYER_JS + "return !!(p && p.classList.contains(arguments[1]));",
                sel.PLAYER,
                sel.PLAYER_OPEN_CLASS,
            )
        )

    def query_text(self, selector: str) -> Optional[str]:
        text = self._js(
            _PLAYER_JS + "const el = p && p.querySelector(arguments[1]); return el ? el.textContent : null;",
            sel.PLAYER,
            selector,
        )
        return text.strip() if isinstance(text, str) else None

    def exists(self, selector: str) -> bool:
        return bool(self._js(_PLAYER_JS + "return !!(p && p.querySelector(arguments[1]));", sel.PLAYER, selector))

    def video_has_source(self) -> bool:
        return bool(
            self._js(
                _PLAYER_JS
                + "const v = p && p.querySelector(arguments[1]);"
                + "return !!(v && (v.currentSrc || v.src || v.querySelector('source')));",
                sel.PLAYER,
                sel.VIDEO,
            )
        )

    def read_volume(self) -> Any:
        return self._js(
            _PLAYER_JS + "const v = p && p.querySelector(arguments[1]); return v ? v.volume : null;",
            sel.PLAYER,
            sel.VIDEO,
        )

    def set_volume(self, volume: float) -> bool:
        return bool(
            self._js(
                _PLAYER_JS
                + """
                const v = p && p.querySelector(arguments[1]);
                if (!v) return false;
                try { v.volume = arguments[2]; v.muted = (arguments[2] === 0); } catch(_) { return false; }
                return true;
                """,
                sel.PLAYER,
                sel.VIDEO,
                float(volume),
            )
        )

    def attenuate(self, duration_ms: int) -> None:
        self._js("if (window.__fnx) window.__fnx.attenuate(arguments[0]);", int(duration_ms))

    def click(self, selector: str) -> bool:
        return bool(
            self._js(
                _PLAYER_JS + "const el = p && p.querySelector(arguments[1]); if (!el) return false; el.click(); return true;",
                sel.PLAYER,
                selector,
            )
        )

    def current_url(self) -> str:
        try:
            return self.driver.current_url or ""
        except WebDriverException:
            return ""

    def navigate(self, url: str) -> None:
        # in-page assignment: driver.get() would block the poll loop until load
        self.driver.execute_script("window.location.assign(arguments[0]);", url)
