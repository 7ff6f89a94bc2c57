"""Shared pytest fixtures: an in-memory player host, a manual clock and exchange builders."""

import json

import pytest

from forcenext import host as sel
from forcenext.correlator import ResponseCorrelator
from forcenext.exchange import Exchange, Request, Response
from forcenext.host import PlayerHost
from forcenext.lifecycle import SessionLifecycleManager
from forcenext.observe import Disposer
from forcenext.scheduler import Scheduler
from forcenext.settings import CarryOverVolume, Options

WATCH_URL = "https://www.primevideo.com/detail/B0CURRENT/ref=atv_hm"


class FakeClock:
    """Whole milliseconds, so deadlines never depend on float drift."""

    def __init__(self):
        self.ms = 0

    def __call__(self) -> float:
        return self.ms / 1000.0


def advance(scheduler, clock, ms):
    for _ in range(int(ms)):
        clock.ms += 1
        scheduler.run_due()


class FakeHost(PlayerHost):
    def __init__(self):
        self.player_open = False
        self.texts = {}
        self.present = set()
        self.video_src = False
        self.volume = 0.8
        self.volume_settable = True
        self.url = WATCH_URL
        self.navigations = []
        self.attenuations = []
        self.clicks = []
        self.volumes_set = []
        self._observers = {}
        self._listeners = {}
        self._ids = 0

    # --- subscriptions ---
    def observe(self, selector, callback, attributes=False, subtree=True):
        self._ids += 1
        sid = self._ids
        self._observers[sid] = (selector, callback)
        return Disposer(lambda: self._observers.pop(sid, None))

    def listen(self, event, selector, callback):
        self._ids += 1
        sid = self._ids
        self._listeners[sid] = (event, selector, callback)
        return Disposer(lambda: self._listeners.pop(sid, None))

    def active_subscriptions(self):
        return len(self._observers) + len(self._listeners)

    def observers_for(self, selector):
        return [cb for s, cb in self._observers.values() if s == selector]

    def fire(self, selector=None):
        for cb in self.observers_for(selector):
            cb()

    def emit(self, event, selector=None, **payload):
        for ev, s, cb in list(self._listeners.values()):
            if ev == event and s == selector:
                cb(payload)

    # --- page state ---
    def show_player(self, title):
        self.player_open = True
        self.texts[sel.TITLE] = title
        self.fire(None)

    def hide_player(self):
        self.player_open = False
        self.fire(None)

    def show_info_bar(self, subtitle, next_button=True):
        self.present.add(sel.INFO_BAR)
        if next_button:
            self.present.add(sel.NEXT_TITLE_BUTTON)
        else:
            self.present.discard(sel.NEXT_TITLE_BUTTON)
        if subtitle is None:
            self.texts.pop(sel.SUBTITLE, None)
        else:
            self.texts[sel.SUBTITLE] = subtitle
        self.fire(sel.INFO_BAR)
        # the info bar lives inside the player subtree
        self.fire(None)

    def change_title(self, title):
        self.texts[sel.TITLE] = title
        self.fire(sel.TITLE)

    # --- PlayerHost ---
    def is_player_open(self):
        return self.player_open

    def query_text(self, selector):
        return self.texts.get(selector)

    def exists(self, selector):
        return selector in self.present or bool(self.texts.get(selector))

    def video_has_source(self):
        return self.video_src

    def read_volume(self):
        return self.volume

    def set_volume(self, volume):
        if not self.volume_settable:
            return False
        self.volume = volume
        self.volumes_set.append(volume)
        return True

    def attenuate(self, duration_ms):
        self.attenuations.append(duration_ms)

    def click(self, selector):
        self.clicks.append(selector)
        self.emit("click", selector)
        return True

    def current_url(self):
        return self.url

    def navigate(self, url):
        self.navigations.append(url)


# === EXCHANGE BUILDERS ===
def json_exchange(url, payload, headers=None, status=200):
    return Exchange(
        request=Request(url=url, headers=headers or {}),
        response=Response(
            status=status,
            headers={"Content-Type": "application/json;charset=UTF-8"},
            body=json.dumps(payload),
        ),
    )


def playback_resources_exchange(asin, mpd_id):
    return json_exchange(
        f"https://atv-ps.primevideo.com/cdp/catalog/GetPlaybackResources?asin={asin}"
        "&desiredResources=PlaybackUrls,SubtitleUrls",
        {
            "playbackUrls": {
                "defaultUrlSetId": "2",
                "urlSets": {
                    "1": {"urls": {"manifest": {"url": "https://cdn.example/other/manifest.mpd"}}},
                    "2": {"urls": {"manifest": {"url": f"https://cdn.example/{mpd_id}/manifest.mpd"}}},
                },
            }
        },
    )


def catalog_metadata_exchange(asin, title):
    return json_exchange(
        f"https://atv-ps.primevideo.com/cdp/catalog/GetPlaybackResources?asin={asin}"
        "&desiredResources=CatalogMetadata",
        {"catalogMetadata": {"catalog": {"id": asin, "title": title}}},
    )


def next_up_exchange(asin, candidate, slot="nextEpisode", image="episode"):
    return json_exchange(
        f"https://atv-ps.primevideo.com/cdp/discovery/GetNextUp?titleId={asin}",
        {
            "carousel": {
                "items": [
                    {
                        "titleId": candidate,
                        "analytics": {"slot": slot},
                        "image": {"preferredType": image},
                    }
                ]
            }
        },
    )


def segment_exchange(mpd_id):
    return Exchange(
        request=Request(url=f"https://cdn.example/{mpd_id}/video/seg_12.mp4"),
        response=Response(status=200, headers={"content-type": "video/mp4"}),
    )


def sections_exchange(autoplay_config, page_id="B0CURRENT"):
    return json_exchange(
        f"https://www.primevideo.com/api/getDetailPage/GetSections?pageId={page_id}",
        {"sections": {"bottom": {"collections": {"collectionList": [{"autoplayConfig": autoplay_config}]}}}},
        headers={"Accept": "application/json"},
    )


MPD_ID = "0a1b2c3d-4e5f-6071-8293-a4b5c6d7e8f9"


def seed_episode(correlator, asin="B0CURRENT", candidate="B0NEXT", title="The Heist", slot="nextEpisode"):
    """Everything the page fetches before the current episode starts playing."""
    correlator.correlate(playback_resources_exchange(asin, MPD_ID))
    correlator.correlate(catalog_metadata_exchange(asin, title))
    correlator.correlate(next_up_exchange(asin, candidate, slot=slot))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return Scheduler(clock=clock)


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def correlator():
    return ResponseCorrelator(Options())


@pytest.fixture
def carry_over(tmp_path):
    return CarryOverVolume(str(tmp_path / "state.json"))


@pytest.fixture
def options():
    return Options()


@pytest.fixture
def lifecycle(host, correlator, scheduler, carry_over, options):
    manager = SessionLifecycleManager(
        host, correlator, scheduler, options_loader=lambda: options, carry_over=carry_over
    )
    manager.start()
    yield manager
    manager.stop("test finished")
