import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

from forcenext.errors import MalformedExchange
from forcenext import payloads

MANIFEST_SUFFIX = ".mpd"
SECTIONS_MARKER = "GetSections"
NEXT_UP_MARKER = "GetNextUp"
PLAYBACK_RESOURCES_MARKER = "GetPlaybackResources"

# media segment requests carry the manifest id as a path component
SEGMENT_PATTERN = re.compile(
    r"/([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})/[^?#]*\.(?:mp4|m4s)(?:[?#]|$)",
    re.IGNORECASE,
)


class ExchangeKind(Enum):
    MANIFEST = "manifest"
    SECTIONS = "sections"
    NEXT_UP = "next_up"
    CATALOG_METADATA = "catalog_metadata"
    PLAYBACK_RESOURCES = "playback_resources"
    MEDIA_SEGMENT = "media_segment"
    UNRECOGNIZED = "unrecognized"


@dataclass
class Request:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        return _find_header(self.headers, name)

    def query(self, name: str) -> Optional[str]:
        values = parse_qs(urlparse(self.url).query).get(name)
        return values[0] if values else None


@dataclass
class Response:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    def header(self, name: str) -> Optional[str]:
        return _find_header(self.headers, name)

    @property
    def content_type(self) -> str:
        return (self.header("content-type") or "").lower()


@dataclass
class Exchange:
    """One intercepted request/response pair."""

    request: Request
    response: Response
    exchange_id: Optional[str] = None
    modified: bool = False

    def rewrite(self, body: str) -> None:
        self.response.body = body
        self.modified = True

    @classmethod
    def from_hook(cls, raw: Dict[str, Any]) -> "Exchange":
        """Build an exchange from a record reported by the page hook."""
        headers = raw.get("headers") or {}
        resp_headers = {}
        if raw.get("contentType"):
            resp_headers["content-type"] = str(raw["contentType"])
        return cls(
            request=Request(url=str(raw.get("url") or ""), headers=dict(headers)),
            response=Response(
                status=int(raw.get("status") or 0),
                headers=resp_headers,
                body=raw.get("body") or "",
            ),
            exchange_id=raw.get("id"),
        )


def _find_header(headers: Dict[str, str], name: str) -> Optional[str]:
    lname = name.lower()
    for k, v in headers.items():
        if k.lower() == lname:
            return v
    return None


def parse_json_body(exchange: Exchange) -> Any:
    try:
        return json.loads(exchange.response.body)
    except (TypeError, ValueError) as e:
        raise MalformedExchange(f"invalid JSON body from {exchange.request.url}: {e}")


# === PREDICATES ===
def _is_json(exchange: Exchange) -> bool:
    return exchange.response.status == 200 and "json" in exchange.response.content_type


def _desired_resources(exchange: Exchange) -> List[str]:
    raw = exchange.request.query("desiredResources") or ""
    return [r.strip() for r in raw.split(",") if r.strip()]


def _is_manifest(exchange: Exchange) -> bool:
    path = urlparse(exchange.request.url).path
    return (
        path.endswith(MANIFEST_SUFFIX)
        and exchange.response.status == 200
        and "xml" in exchange.response.content_type
    )


def _is_sections(exchange: Exchange) -> bool:
    return (
        SECTIONS_MARKER in exchange.request.url
        and exchange.request.header("accept") == "application/json"
        and exchange.response.status == 200
    )


def _is_next_up(exchange: Exchange) -> bool:
    return NEXT_UP_MARKER in exchange.request.url and _is_json(exchange)


def _is_playback_resources(exchange: Exchange) -> bool:
    return (
        PLAYBACK_RESOURCES_MARKER in exchange.request.url
        and "PlaybackUrls" in _desired_resources(exchange)
        and _is_json(exchange)
    )


def _is_catalog_metadata(exchange: Exchange) -> bool:
    desired = _desired_resources(exchange)
    return (
        PLAYBACK_RESOURCES_MARKER in exchange.request.url
        and "CatalogMetadata" in desired
        and "PlaybackUrls" not in desired
        and _is_json(exchange)
    )


def _is_media_segment(exchange: Exchange) -> bool:
    return SEGMENT_PATTERN.search(exchange.request.url) is not None


# === IDENTIFIER EXTRACTION ===
def _no_identifier(exchange: Exchange, payload: Any) -> Optional[str]:
    return None


def _query_param(name: str) -> Callable[[Exchange, Any], Optional[str]]:
    def extract(exchange: Exchange, payload: Any) -> Optional[str]:
        return exchange.request.query(name)

    return extract


def _catalog_id(exchange: Exchange, payload: Any) -> Optional[str]:
    return payloads.catalog_id(payload)


def _segment_manifest_id(exchange: Exchange, payload: Any) -> Optional[str]:
    m = SEGMENT_PATTERN.search(exchange.request.url)
    return m.group(1).lower() if m else None


@dataclass(frozen=True)
class ExchangeRule:
    kind: ExchangeKind
    matches: Callable[[Exchange], bool]
    extract: Callable[[Exchange, Any], Optional[str]]
    json_body: bool = True
    requires_identifier: bool = True


# Order matters: the first matching rule wins.
RULES: List[ExchangeRule] = [
    ExchangeRule(ExchangeKind.MANIFEST, _is_manifest, _no_identifier,
                 json_body=False, requires_identifier=False),
    ExchangeRule(ExchangeKind.SECTIONS, _is_sections, _query_param("pageId"),
                 requires_identifier=False),
    ExchangeRule(ExchangeKind.NEXT_UP, _is_next_up, _query_param("titleId")),
    ExchangeRule(ExchangeKind.PLAYBACK_RESOURCES, _is_playback_resources, _query_param("asin")),
    ExchangeRule(ExchangeKind.CATALOG_METADATA, _is_catalog_metadata, _catalog_id),
    ExchangeRule(ExchangeKind.MEDIA_SEGMENT, _is_media_segment, _segment_manifest_id,
                 json_body=False),
]

RULES_BY_KIND: Dict[ExchangeKind, ExchangeRule] = {r.kind: r for r in RULES}


def classify(exchange: Exchange) -> ExchangeKind:
    for rule in RULES:
        try:
            if rule.matches(exchange):
                return rule.kind
        except Exception as e:
            logging.debug(f"Predicate {rule.kind.value} failed on {exchange.request.url}: {e}")
    return ExchangeKind.UNRECOGNIZED


def hook_patterns(options) -> Dict[str, Any]:
    """URL filters handed to the page hook so only relevant traffic is reported.

    Responses are held for a rewrite only when an option can change them.
    """
    hold: List[str] = []
    if options.enable_autoplay or options.hide_nextup_card:
        hold.append(SECTIONS_MARKER)
    if options.force_highest_resolution or options.remove_ad_data:
        hold.append(MANIFEST_SUFFIX)
    return {
        "hold": hold,
        "report": [NEXT_UP_MARKER, PLAYBACK_RESOURCES_MARKER],
        "segment": SEGMENT_PATTERN.pattern,
    }
