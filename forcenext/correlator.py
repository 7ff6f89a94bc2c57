import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from forcenext import payloads
from forcenext.cache import BoundedCache
from forcenext.config import CACHE_CAPACITY
from forcenext.errors import MalformedExchange
from forcenext.exchange import RULES_BY_KIND, Exchange, ExchangeKind, classify, parse_json_body
from forcenext.manifest import transform_manifest
from forcenext.observe import Disposer
from forcenext.settings import Options

Listener = Callable[[ExchangeKind, str], None]


@dataclass
class CorrelatedRecord:
    identifier: str
    kind: ExchangeKind
    payload: Any


class ResponseCorrelator:
    """
    Classifies intercepted exchanges, applies the response rewrites and keeps
    the correlated payloads in one bounded cache per resource kind.
    The caches outlive sessions.
    """

    def __init__(self, options: Optional[Options] = None, capacity: int = CACHE_CAPACITY):
        self.options = options or Options()
        self.metadata_by_title_id = BoundedCache(capacity)
        self.next_up_by_title_id = BoundedCache(capacity)
        self.playback_resources_by_title_id = BoundedCache(capacity)
        # last manifest id seen in a segment request, kept across sessions
        self.last_manifest_id: Optional[str] = None
        self._listeners: List[Listener] = []

    def cache_for(self, kind: ExchangeKind) -> Optional[BoundedCache]:
        return {
            ExchangeKind.CATALOG_METADATA: self.metadata_by_title_id,
            ExchangeKind.NEXT_UP: self.next_up_by_title_id,
            ExchangeKind.PLAYBACK_RESOURCES: self.playback_resources_by_title_id,
        }.get(kind)

    def subscribe(self, listener: Listener) -> Disposer:
        self._listeners.append(listener)

        def release():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Disposer(release)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def correlate(self, exchange: Exchange) -> Optional[CorrelatedRecord]:
        """Never raises: a failure leaves the exchange as it was delivered."""
        try:
            kind = classify(exchange)
            if kind is ExchangeKind.UNRECOGNIZED:
                return None
            return self._correlate(kind, exchange)
        except MalformedExchange as e:
            logging.warning(f"Exchange ignored: {e}")
        except Exception as e:
            logging.error(f"Correlation failed for {exchange.request.url}: {e}")
        return None

    def _correlate(self, kind: ExchangeKind, exchange: Exchange) -> Optional[CorrelatedRecord]:
        rule = RULES_BY_KIND[kind]
        payload = parse_json_body(exchange) if rule.json_body else None

        if kind is ExchangeKind.SECTIONS:
            self._rewrite_sections(exchange, payload)
        elif kind is ExchangeKind.MANIFEST:
            self._rewrite_manifest(exchange)

        identifier = rule.extract(exchange, payload)
        if not identifier:
            if rule.requires_identifier:
                raise MalformedExchange(f"{kind.value} exchange without identifier: {exchange.request.url}")
            return None

        cache = self.cache_for(kind)
        if cache is not None:
            if cache.insert_if_absent(identifier, payload):
                logging.debug(f"Cached {kind.value} for {identifier} ({len(cache)} entries)")
        if kind is ExchangeKind.PLAYBACK_RESOURCES:
            self._cache_embedded_metadata(payload)
        elif kind is ExchangeKind.MEDIA_SEGMENT:
            self.last_manifest_id = identifier
        self._notify(kind, identifier)
        return CorrelatedRecord(identifier=identifier, kind=kind, payload=payload)

    def _cache_embedded_metadata(self, payload: Any) -> None:
        """A combined PlaybackUrls+CatalogMetadata response also fills the metadata cache."""
        title_id = payloads.catalog_id(payload)
        if title_id and self.metadata_by_title_id.insert_if_absent(title_id, payload):
            logging.debug(f"Cached catalog_metadata for {title_id} from playback resources")

    def _rewrite_sections(self, exchange: Exchange, data: Any) -> None:
        cfg = payloads.autoplay_config(data)
        if cfg is None:
            return
        changed = False
        if self.options.enable_autoplay and cfg.get(payloads.AUTOPLAY_ENABLED_KEY) is not True:
            cfg[payloads.AUTOPLAY_ENABLED_KEY] = True
            changed = True
        if self.options.hide_nextup_card and cfg.get(payloads.AUTOPLAY_CARD_KEY) is not False:
            cfg[payloads.AUTOPLAY_CARD_KEY] = False
            changed = True
        if changed:
            exchange.rewrite(json.dumps(data))
            logging.info("Autoplay config rewritten")

    def _rewrite_manifest(self, exchange: Exchange) -> None:
        body = transform_manifest(
            exchange.response.body,
            highest_resolution=self.options.force_highest_resolution,
            strip_ads=self.options.remove_ad_data,
        )
        if body is not None:
            exchange.rewrite(body)
            logging.info("Manifest rewritten")

    def _notify(self, kind: ExchangeKind, identifier: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, identifier)
            except Exception as e:
                logging.error(f"Correlation listener failed: {e}")

    def find_title_by_manifest(self, mpd_id: str) -> Optional[str]:
        """Title id whose default URL set references the manifest id."""
        for title_id, resources in self.playback_resources_by_title_id.items():
            if payloads.url_set_contains(payloads.default_url_set(resources), mpd_id):
                return title_id
        return None

    def stats(self) -> Dict[str, int]:
        return {
            "metadata": len(self.metadata_by_title_id),
            "next_up": len(self.next_up_by_title_id),
            "playback_resources": len(self.playback_resources_by_title_id),
        }
