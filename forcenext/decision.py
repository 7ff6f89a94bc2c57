import logging
from enum import Enum
from typing import Callable, FrozenSet, Optional
from urllib.parse import urlencode, urlparse

from forcenext import config
from forcenext import host as sel
from forcenext.detector import EpisodeTransitionDetector
from forcenext.errors import NavigationPreconditionFailure
from forcenext.host import PlayerHost
from forcenext.session import NOT_NEXT_EPISODE, Session
from forcenext.settings import CarryOverVolume, parse_volume


class Outcome(Enum):
    PENDING = "pending"
    ABORTED = "aborted"
    NAVIGATED = "navigated"
    DEFERRED_IN_PAGE = "deferred_in_page"


DETAIL_SEGMENT = "/detail/"


def build_next_episode_url(current_url: str, title_id: str, volume: Optional[float] = None) -> str:
    """Next-episode detail URL on the storefront currently playing.

    The path up to the detail segment is kept (/gp/video/detail/ on amazon.*,
    /region/xx/detail/ on primevideo.com).
    """
    parsed = urlparse(current_url or config.START_URL)
    origin = f"{parsed.scheme or 'https'}://{parsed.netloc}"
    idx = parsed.path.find(DETAIL_SEGMENT)
    prefix = parsed.path[: idx + len(DETAIL_SEGMENT)] if idx >= 0 else DETAIL_SEGMENT
    params = {"autoplay": "1", "t": "0"}
    if volume is not None:
        params["volume"] = f"{volume:g}"
    return f"{origin}{prefix}{title_id}/?{urlencode(params)}"


class ContinuationDecision:
    """
    Runs once per session, after the player closed.

    grace delay -> checks -> decision window (attenuation + settle delay)
    -> re-checks -> navigate / defer to in-page autoplay / abort.
    All timers belong to the session scope; ending the session cancels them.
    """

    def __init__(
        self,
        session: Session,
        detector: EpisodeTransitionDetector,
        host: PlayerHost,
        carry_over: CarryOverVolume,
        on_finished: Optional[Callable[["ContinuationDecision"], None]] = None,
    ):
        self.session = session
        self.detector = detector
        self.host = host
        self.carry_over = carry_over
        self.on_finished = on_finished
        self.outcome = Outcome.PENDING
        self.reason = ""
        self.target_url: Optional[str] = None
        self._started = False
        self._seen_at_window: FrozenSet[str] = frozenset()

    @property
    def finished(self) -> bool:
        return self.outcome is not Outcome.PENDING

    def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.session.scope.call_later(config.USER_CLOSE_GRACE_MS, self._evaluate)

    def cancel(self, reason: str) -> None:
        if not self.finished:
            self._finish(Outcome.ABORTED, reason)

    def _finish(self, outcome: Outcome, reason: str) -> None:
        if self.finished:
            return
        self.outcome = outcome
        self.reason = reason
        logging.info(f"Session #{self.session.number}: {outcome.value} ({reason})")
        if self.on_finished is not None:
            try:
                self.on_finished(self)
            except Exception as e:
                logging.error(f"Decision finish handler failed: {e}")

    def _evaluate(self) -> None:
        snap = self.detector.snapshot()
        if snap.title_changed:
            return self._finish(Outcome.ABORTED, "title changed")
        if not snap.is_confirmed_next_episode or not snap.subtitle_text:
            return self._finish(Outcome.ABORTED, "no next episode")
        if self.session.state.user_closed:
            return self._finish(Outcome.ABORTED, "closed by user")

        self._seen_at_window = frozenset(self.session.state.subtitle_seen)
        try:
            self.host.attenuate(config.ATTENUATION_MS)
        except Exception as e:
            logging.debug(f"Attenuation failed: {e}")
        self.session.scope.call_later(
            config.ATTENUATION_MS + config.CONTINUATION_DELAY_MS, self._on_window_expired
        )
        logging.info(f"Session #{self.session.number}: decision window opened for [{snap.subtitle_text}]")

    def _on_window_expired(self) -> None:
        st = self.session.state
        if st.user_closed:
            return self._finish(Outcome.ABORTED, "closed by user during window")
        if st.title_changed:
            return self._finish(Outcome.ABORTED, "title changed during window")

        try:
            subtitle = (self.host.query_text(sel.SUBTITLE) or "").strip()
            has_source = bool(subtitle) and subtitle not in self._seen_at_window and self.host.video_has_source()
        except Exception as e:
            logging.error(f"Reading player state failed: {e}")
            return self._finish(Outcome.ABORTED, "player state unavailable")

        if not subtitle:
            return self._navigate("no episode context")
        if subtitle not in self._seen_at_window:
            if has_source:
                return self._finish(Outcome.DEFERRED_IN_PAGE, f"in-page continuation to [{subtitle}]")
            return self._navigate("in-page continuation has no video")
        return self._navigate(f"stalled on [{subtitle}]")

    def _require_next_id(self) -> str:
        next_id = self.detector.snapshot().next_episode_id
        if not next_id or next_id == NOT_NEXT_EPISODE:
            raise NavigationPreconditionFailure(f"no next episode id ({next_id!r})")
        return next_id

    def _navigate(self, why: str) -> None:
        try:
            next_id = self._require_next_id()
        except NavigationPreconditionFailure as e:
            logging.warning(f"Continuation abandoned: {e}")
            return self._finish(Outcome.ABORTED, "no next episode id")

        volume = None
        try:
            volume = parse_volume(self.host.read_volume())
        except Exception as e:
            logging.debug(f"Reading volume failed: {e}")
        if volume is not None:
            self.carry_over.save(volume)

        self.target_url = build_next_episode_url(self.host.current_url(), next_id, volume)
        logging.info(f"Session #{self.session.number}: navigating to {self.target_url} ({why})")
        self.session.scope.call_later(config.NAVIGATE_DELAY_MS, self._perform_navigation)

    def _perform_navigation(self) -> None:
        if self.session.state.user_closed:
            self.carry_over.clear()
            return self._finish(Outcome.ABORTED, "closed by user before navigation")
        try:
            self.host.navigate(self.target_url)
        except Exception as e:
            logging.error(f"Navigation to {self.target_url} failed: {e}")
            return self._finish(Outcome.ABORTED, "navigation failed")
        self._finish(Outcome.NAVIGATED, self.target_url)
