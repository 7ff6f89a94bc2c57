"""
Boundary between the engine and the page it runs against.

The engine only talks to a PlayerHost: change notifications come in through
observe()/listen(), everything else is a fresh query of the current page
state. forcenext.browser implements it on top of Selenium.
"""

from typing import Any, Callable, Dict, Optional

from forcenext.observe import Disposer

# === PLAYER SELECTORS ===
PLAYER = "[id*='dv-web-player']"
PLAYER_OPEN_CLASS = "dv-player-fullscreen"
VIDEO = ".rendererContainer video"
TITLE = ".atvwebplayersdk-title-text"
SUBTITLE = ".atvwebplayersdk-subtitle-text"
INFO_BAR = ".atvwebplayersdk-infobar-container"
NEXT_TITLE_BUTTON = ".atvwebplayersdk-nexttitle-button"
CLOSE_BUTTON = ".atvwebplayersdk-playerclose-button"

ESCAPE_KEY = "Escape"


class PlayerHost:
    """Selectors are resolved inside the player element; None means the player itself."""

    def observe(
        self,
        selector: Optional[str],
        callback: Callable[[], None],
        attributes: bool = False,
        subtree: bool = True,
    ) -> Disposer:
        raise NotImplementedError

    def listen(
        self,
        event: str,
        selector: Optional[str],
        callback: Callable[[Dict[str, Any]], None],
    ) -> Disposer:
        raise NotImplementedError

    def is_player_open(self) -> bool:
        raise NotImplementedError

    def query_text(self, selector: str) -> Optional[str]:
        raise NotImplementedError

    def exists(self, selector: str) -> bool:
        raise NotImplementedError

    def video_has_source(self) -> bool:
        raise NotImplementedError

    def read_volume(self) -> Any:
        raise NotImplementedError

    def set_volume(self, volume: float) -> bool:
        raise NotImplementedError

    def attenuate(self, duration_ms: int) -> None:
        raise NotImplementedError

    def click(self, selector: str) -> bool:
        raise NotImplementedError

    def current_url(self) -> str:
        raise NotImplementedError

    def navigate(self, url: str) -> None:
        raise NotImplementedError
