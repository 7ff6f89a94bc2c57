import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from forcenext import host as sel
from forcenext import payloads
from forcenext.correlator import ResponseCorrelator
from forcenext.errors import UnresolvedCorrelation
from forcenext.exchange import ExchangeKind
from forcenext.host import PlayerHost
from forcenext.session import NOT_NEXT_EPISODE, Session


class DetectorPhase(Enum):
    IDLE = "idle"
    WATCHING_TITLE = "watching_title"
    WATCHING_INFO_BAR = "watching_info_bar"
    SETTLED = "settled"


@dataclass(frozen=True)
class DetectorSnapshot:
    title_changed: bool
    has_next_episode_affordance: bool
    subtitle_text: Optional[str]
    next_episode_id: Optional[str]
    is_confirmed_next_episode: bool


class EpisodeTransitionDetector:
    """
    Tracks the title, the info bar and the correlated next-up data of one session.

    Notifications from the title, the info bar and the network arrive in any
    order, so every handler re-reads the page and re-runs resolution against
    the accumulated session state.
    """

    def __init__(self, session: Session, host: PlayerHost, correlator: ResponseCorrelator):
        self.session = session
        self.state = session.state
        self.host = host
        self.correlator = correlator
        self._title_watched = False
        self._info_bar_watched = False
        self._settled = False
        self._title_listeners: List[Callable[[str, str], None]] = []

    @property
    def phase(self) -> DetectorPhase:
        if self._settled:
            return DetectorPhase.SETTLED
        if self._info_bar_watched:
            return DetectorPhase.WATCHING_INFO_BAR
        if self._title_watched:
            return DetectorPhase.WATCHING_TITLE
        return DetectorPhase.IDLE

    def on_title_changed(self, callback: Callable[[str, str], None]) -> None:
        self._title_listeners.append(callback)

    def attach(self) -> None:
        scope = self.session.scope
        scope.add(self.host.observe(None, scope.guard(self._on_player_changed), attributes=True))
        scope.add(self.correlator.subscribe(scope.guard(self._on_correlated)))
        if not self.state.mpd_id and self.correlator.last_manifest_id:
            # segments may have started before this session opened
            self.state.mpd_id = self.correlator.last_manifest_id
        self._on_player_changed()

    def detach(self) -> None:
        self._settled = True

    def _on_player_changed(self) -> None:
        if self._settled:
            return
        if not self._title_watched:
            title = self.host.query_text(sel.TITLE)
            if title:
                self.state.title_text = title
                self._title_watched = True
                self.session.scope.add(
                    self.host.observe(sel.TITLE, self.session.scope.guard(self._on_title_mutated))
                )
                logging.info(f"Session #{self.session.number}: watching title [{title}]")
        if not self._info_bar_watched and self.host.exists(sel.INFO_BAR):
            self._info_bar_watched = True
            self.session.scope.add(
                self.host.observe(
                    sel.INFO_BAR, self.session.scope.guard(self._on_info_bar_changed), attributes=True
                )
            )
            self._on_info_bar_changed()

    def _on_title_mutated(self) -> None:
        if self._settled:
            return
        new_title = self.host.query_text(sel.TITLE)
        if not new_title:
            return
        previous = self.state.title_text
        if new_title == previous:
            return
        logging.info(f"previous [{previous}], current [{new_title}]")
        if self.state.title_changed:
            return
        self.state.mark_title_changed()
        for cb in list(self._title_listeners):
            try:
                cb(previous or "", new_title)
            except Exception as e:
                logging.error(f"Title change handler failed: {e}")

    def _on_info_bar_changed(self) -> None:
        if self._settled:
            return
        affordance = self.host.exists(sel.NEXT_TITLE_BUTTON)
        subtitle = (self.host.query_text(sel.SUBTITLE) or "").strip()
        if subtitle and subtitle not in self.state.subtitle_seen:
            self.state.subtitle_seen.add(subtitle)
            logging.debug(f"Subtitle seen: [{subtitle}]")
        if affordance and subtitle:
            self.state.has_next_episode_affordance = True
            self.state.subtitle_text = subtitle
        else:
            self.state.has_next_episode_affordance = False
        self.resolve()

    def _on_correlated(self, kind: ExchangeKind, identifier: str) -> None:
        if self._settled:
            return
        if kind is ExchangeKind.MEDIA_SEGMENT:
            if identifier == self.state.mpd_id:
                return
            self.state.mpd_id = identifier
            logging.debug(f"Manifest id {identifier}")
        self.resolve()

    def _lookup_candidate(self) -> Tuple[str, Dict[str, Any], str]:
        """Catalog title, first next-up item and its title id for the playing manifest."""
        st = self.state
        if not st.mpd_id:
            raise UnresolvedCorrelation("manifest id not seen yet")
        title_id = self.correlator.find_title_by_manifest(st.mpd_id)
        if not title_id:
            raise UnresolvedCorrelation(f"no playback resources for manifest {st.mpd_id}")
        metadata = self.correlator.metadata_by_title_id.get(title_id)
        next_up = self.correlator.next_up_by_title_id.get(title_id)
        if metadata is None or next_up is None:
            raise UnresolvedCorrelation(f"metadata/next-up missing for {title_id}")

        catalog_title = payloads.catalog_title(metadata)
        if not catalog_title or not st.subtitle_text or catalog_title not in st.subtitle_text:
            raise UnresolvedCorrelation(f"[{catalog_title}] does not match subtitle [{st.subtitle_text}]")

        item = payloads.first_carousel_item(next_up)
        candidate = payloads.candidate_title_id(item) if item else None
        if not candidate:
            raise UnresolvedCorrelation(f"empty next-up carousel for {title_id}")
        return catalog_title, item, candidate

    def resolve(self) -> bool:
        """Try to resolve the next-episode candidate. Returns True once it is settled either way."""
        st = self.state
        try:
            catalog_title, item, candidate = self._lookup_candidate()
        except UnresolvedCorrelation as e:
            logging.debug(f"Unresolved: {e}")
            return False

        if not (payloads.is_next_episode_slot(item) and payloads.is_episode_image(item)):
            if st.next_episode_id != NOT_NEXT_EPISODE:
                logging.info(f"Session #{self.session.number}: {candidate} is not a next episode")
            st.next_episode_id = NOT_NEXT_EPISODE
            st.is_confirmed_next_episode = False
            return True

        if st.next_episode_id != candidate:
            logging.info(f"Session #{self.session.number}: next episode {candidate} after [{catalog_title}]")
        st.next_episode_id = candidate
        st.is_confirmed_next_episode = True
        return True

    def snapshot(self) -> DetectorSnapshot:
        st = self.state
        return DetectorSnapshot(
            title_changed=st.title_changed,
            has_next_episode_affordance=st.has_next_episode_affordance,
            subtitle_text=st.subtitle_text,
            next_episode_id=st.next_episode_id,
            is_confirmed_next_episode=st.is_confirmed_next_episode,
        )
