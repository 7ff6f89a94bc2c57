import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Set

from forcenext.observe import Scope
from forcenext.scheduler import Scheduler
from forcenext.settings import Options

# next_episode_id value for a candidate that is known not to be the next episode
NOT_NEXT_EPISODE = "none"

_session_seq = itertools.count(1)


@dataclass
class SessionState:
    mpd_id: Optional[str] = None
    title_text: Optional[str] = None
    subtitle_text: Optional[str] = None
    subtitle_seen: Set[str] = field(default_factory=set)
    has_next_episode_affordance: bool = False
    title_changed: bool = False
    user_closed: bool = False
    next_episode_id: Optional[str] = None
    is_confirmed_next_episode: bool = False

    # title_changed and user_closed only ever go from False to True
    def mark_title_changed(self) -> None:
        self.title_changed = True

    def mark_user_closed(self) -> None:
        self.user_closed = True


class SessionPhase(Enum):
    OPEN = "open"
    DECIDING = "deciding"
    ENDED = "ended"


class Session:
    """One player open -> close cycle, plus the decision that follows the close."""

    def __init__(self, scheduler: Scheduler, options: Options):
        self.number = next(_session_seq)
        self.options = options
        self.state = SessionState()
        self.phase = SessionPhase.OPEN
        self.scope = Scope(scheduler, name=f"session #{self.number}")
        self.detector = None
        self.decision = None

    @property
    def is_live(self) -> bool:
        return self.scope.live

    def end(self, reason: str = "") -> None:
        if self.phase is SessionPhase.ENDED:
            return
        self.phase = SessionPhase.ENDED
        if self.decision is not None:
            self.decision.cancel(reason or "session ended")
        if self.detector is not None:
            self.detector.detach()
        self.scope.close()
        logging.info(f"Session #{self.number} ended{': ' + reason if reason else ''}")
