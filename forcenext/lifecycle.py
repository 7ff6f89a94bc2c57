import logging
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

from forcenext import config
from forcenext import host as sel
from forcenext.correlator import ResponseCorrelator
from forcenext.decision import ContinuationDecision
from forcenext.detector import EpisodeTransitionDetector
from forcenext.host import PlayerHost
from forcenext.observe import Disposer
from forcenext.scheduler import Scheduler
from forcenext.session import Session, SessionPhase
from forcenext.settings import CarryOverVolume, Options, load_options, parse_volume


class SessionLifecycleManager:
    """
    Opens a session when the player enters fullscreen and closes it when it
    leaves. Everything a session attaches is owned by its scope, so ending the
    session releases all of it, however quickly the player toggles.
    """

    def __init__(
        self,
        host: PlayerHost,
        correlator: ResponseCorrelator,
        scheduler: Scheduler,
        options_loader: Callable[[], Options] = load_options,
        carry_over: Optional[CarryOverVolume] = None,
    ):
        self.host = host
        self.correlator = correlator
        self.scheduler = scheduler
        self.options_loader = options_loader
        self.carry_over = carry_over or CarryOverVolume()
        self.current: Optional[Session] = None
        self.sessions_opened = 0
        self._player_sub: Optional[Disposer] = None

    @property
    def running(self) -> bool:
        return self._player_sub is not None

    def start(self) -> None:
        if self._player_sub is not None:
            return
        self._player_sub = self.host.observe(None, self._on_player_changed, attributes=True, subtree=False)
        self._on_player_changed()

    def stop(self, reason: str = "stopped") -> None:
        if self._player_sub is not None:
            self._player_sub.dispose()
            self._player_sub = None
        if self.current is not None:
            session, self.current = self.current, None
            session.end(reason)

    def _on_player_changed(self) -> None:
        try:
            open_now = self.host.is_player_open()
        except Exception as e:
            logging.debug(f"Player state unavailable: {e}")
            return
        cur = self.current
        if open_now:
            if cur is None or cur.phase is not SessionPhase.OPEN:
                self._open()
        elif cur is not None and cur.phase is SessionPhase.OPEN:
            self._close(cur)

    def _open(self) -> None:
        if self.current is not None:
            previous, self.current = self.current, None
            previous.end("superseded by a new session")

        options = self.options_loader()
        self.correlator.options = options
        session = Session(self.scheduler, options)
        self.current = session
        self.sessions_opened += 1
        logging.info(f"Video opened (session #{session.number}).")

        detector = EpisodeTransitionDetector(session, self.host, self.correlator)
        session.detector = detector
        if options.prevent_recommended_transitions:
            detector.on_title_changed(session.scope.guard(self._close_player))
        detector.attach()

        self._watch_user_close(session)
        self._restore_volume(session)

        if options.force_play_next_episode:
            session.decision = ContinuationDecision(
                session, detector, self.host, self.carry_over, on_finished=self._on_decision_finished
            )

    def _close(self, session: Session) -> None:
        logging.info(f"Video closed (session #{session.number}).")
        session.phase = SessionPhase.DECIDING
        if session.decision is not None:
            session.decision.start()
        else:
            self._end(session, "player closed")

    def _end(self, session: Session, reason: str) -> None:
        if self.current is session:
            self.current = None
        session.end(reason)

    def _on_decision_finished(self, decision: ContinuationDecision) -> None:
        self._end(decision.session, f"decision {decision.outcome.value}")

    def _watch_user_close(self, session: Session) -> None:
        scope = session.scope
        state = session.state

        def on_close_click(_event) -> None:
            if not state.user_closed:
                logging.info(f"Session #{session.number}: close button clicked")
            state.mark_user_closed()

        def on_key(event) -> None:
            if (event or {}).get("key") != sel.ESCAPE_KEY:
                return
            if not state.user_closed:
                logging.info(f"Session #{session.number}: Escape pressed")
            state.mark_user_closed()

        scope.add(self.host.listen("click", sel.CLOSE_BUTTON, scope.guard(on_close_click)))
        scope.add(self.host.listen("keydown", None, scope.guard(on_key)))

    def _close_player(self, previous: str, current: str) -> None:
        logging.info(f"Title changed from [{previous}] to [{current}], closing player")
        self.host.click(sel.CLOSE_BUTTON)

    def _restore_volume(self, session: Session) -> None:
        if not self.carry_over.pending():
            return
        query = parse_qs(urlparse(self.host.current_url() or "").query)
        volume = parse_volume((query.get("volume") or [None])[0])
        if volume is None:
            volume = self.carry_over.load()
        if volume is None:
            self.carry_over.clear()
            return

        scope = session.scope
        sub: Optional[Disposer] = None
        timer = None

        def attempt() -> None:
            if not self.host.set_volume(volume):
                return
            logging.info(f"Volume restored to {volume:g}")
            self.carry_over.clear()
            if sub is not None:
                sub.dispose()
            if timer is not None:
                timer.cancel()

        def give_up() -> None:
            if sub is not None:
                sub.dispose()
            self.carry_over.clear()
            logging.warning("Volume restore timed out")

        if self.host.set_volume(volume):
            logging.info(f"Volume restored to {volume:g}")
            self.carry_over.clear()
            return
        sub = scope.add(self.host.observe(None, scope.guard(attempt)))
        timer = scope.call_later(config.VOLUME_RESTORE_WINDOW_MS, give_up)
