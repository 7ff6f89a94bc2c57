import json

from conftest import (
    MPD_ID,
    catalog_metadata_exchange,
    json_exchange,
    next_up_exchange,
    playback_resources_exchange,
    sections_exchange,
    segment_exchange,
    seed_episode,
)

from forcenext.correlator import ResponseCorrelator
from forcenext.exchange import ExchangeKind
from forcenext.settings import Options


def combined_exchange(asin, title):
    return json_exchange(
        f"https://atv-ps.primevideo.com/cdp/catalog/GetPlaybackResources?asin={asin}"
        "&desiredResources=PlaybackUrls,CatalogMetadata",
        {
            "catalogMetadata": {"catalog": {"id": asin, "title": title}},
            "playbackUrls": {
                "defaultUrlSetId": "1",
                "urlSets": {"1": {"urls": {"manifest": {"url": f"https://cdn.example/{MPD_ID}/manifest.mpd"}}}},
            },
        },
    )


class TestCorrelation:
    def test_caches_by_kind_and_identifier(self, correlator):
        seed_episode(correlator, asin="B0CURRENT", candidate="B0NEXT")

        assert correlator.stats() == {"metadata": 1, "next_up": 1, "playback_resources": 1}
        assert "B0CURRENT" in correlator.metadata_by_title_id
        assert "B0CURRENT" in correlator.next_up_by_title_id
        assert "B0CURRENT" in correlator.playback_resources_by_title_id

    def test_find_title_by_manifest_uses_default_url_set(self, correlator):
        correlator.correlate(playback_resources_exchange("B0CURRENT", MPD_ID))
        assert correlator.find_title_by_manifest(MPD_ID) == "B0CURRENT"
        assert correlator.find_title_by_manifest(MPD_ID.upper()) == "B0CURRENT"
        # url set "1" is not the default one
        assert correlator.find_title_by_manifest("other") is None

    def test_first_seen_payload_wins(self, correlator):
        correlator.correlate(catalog_metadata_exchange("B0A", "First"))
        correlator.correlate(catalog_metadata_exchange("B0A", "Second"))
        payload = correlator.metadata_by_title_id.get("B0A")
        assert payload["catalogMetadata"]["catalog"]["title"] == "First"

    def test_record_returned_for_segment(self, correlator):
        record = correlator.correlate(segment_exchange(MPD_ID))
        assert record.kind is ExchangeKind.MEDIA_SEGMENT
        assert record.identifier == MPD_ID
        assert correlator.last_manifest_id == MPD_ID

    def test_combined_playback_and_catalog_response_fills_both_caches(self, correlator):
        correlator.correlate(combined_exchange("B0CURRENT", "The Heist"))

        assert correlator.stats() == {"metadata": 1, "next_up": 0, "playback_resources": 1}
        assert correlator.find_title_by_manifest(MPD_ID) == "B0CURRENT"
        payload = correlator.metadata_by_title_id.get("B0CURRENT")
        assert payload["catalogMetadata"]["catalog"]["title"] == "The Heist"

    def test_combined_response_keeps_earlier_metadata(self, correlator):
        correlator.correlate(catalog_metadata_exchange("B0CURRENT", "First"))
        correlator.correlate(combined_exchange("B0CURRENT", "Second"))
        payload = correlator.metadata_by_title_id.get("B0CURRENT")
        assert payload["catalogMetadata"]["catalog"]["title"] == "First"

    def test_listeners_are_notified(self, correlator):
        seen = []
        disposer = correlator.subscribe(lambda kind, ident: seen.append((kind, ident)))
        correlator.correlate(next_up_exchange("B0A", "B0B"))
        disposer.dispose()
        correlator.correlate(next_up_exchange("B0C", "B0D"))

        assert seen == [(ExchangeKind.NEXT_UP, "B0A")]
        assert correlator.listener_count == 0

    def test_failing_listener_does_not_break_correlation(self, correlator):
        seen = []

        def broken(kind, ident):
            raise RuntimeError("listener bug")

        correlator.subscribe(broken)
        correlator.subscribe(lambda kind, ident: seen.append(ident))
        record = correlator.correlate(next_up_exchange("B0A", "B0B"))
        assert record is not None
        assert seen == ["B0A"]


class TestMalformedExchanges:
    def test_invalid_json_passes_through_untouched(self, correlator):
        ex = next_up_exchange("B0A", "B0B")
        ex.response.body = "<html>oops</html>"
        assert correlator.correlate(ex) is None
        assert not ex.modified
        assert len(correlator.next_up_by_title_id) == 0

    def test_missing_identifier(self, correlator):
        ex = catalog_metadata_exchange("B0A", "Pilot")
        ex.response.body = json.dumps({"catalogMetadata": {}})
        assert correlator.correlate(ex) is None
        assert len(correlator.metadata_by_title_id) == 0

    def test_unrecognized_is_ignored(self, correlator):
        ex = next_up_exchange("B0A", "B0B")
        ex.request.url = "https://example.com/ping"
        assert correlator.correlate(ex) is None


class TestSectionsRewrite:
    def test_enables_autoplay(self):
        correlator = ResponseCorrelator(Options(enable_autoplay=True))
        ex = sections_exchange({"autoplayEnabled": False, "showAutoplayCard": True})
        correlator.correlate(ex)

        assert ex.modified
        cfg = json.loads(ex.response.body)["sections"]["bottom"]["collections"]["collectionList"][0][
            "autoplayConfig"
        ]
        assert cfg == {"autoplayEnabled": True, "showAutoplayCard": True}

    def test_hides_nextup_card(self):
        correlator = ResponseCorrelator(Options(enable_autoplay=False, hide_nextup_card=True))
        ex = sections_exchange({"autoplayEnabled": False, "showAutoplayCard": True})
        correlator.correlate(ex)
        cfg = json.loads(ex.response.body)["sections"]["bottom"]["collections"]["collectionList"][0][
            "autoplayConfig"
        ]
        assert cfg == {"autoplayEnabled": False, "showAutoplayCard": False}

    def test_untouched_when_already_enabled(self):
        correlator = ResponseCorrelator(Options(enable_autoplay=True))
        ex = sections_exchange({"autoplayEnabled": True})
        correlator.correlate(ex)
        assert not ex.modified

    def test_untouched_when_option_disabled(self):
        correlator = ResponseCorrelator(Options(enable_autoplay=False))
        ex = sections_exchange({"autoplayEnabled": False})
        correlator.correlate(ex)
        assert not ex.modified

    def test_sections_are_not_cached(self, correlator):
        correlator.correlate(sections_exchange({"autoplayEnabled": False}))
        assert correlator.stats() == {"metadata": 0, "next_up": 0, "playback_resources": 0}
