"""
Accessors for the nested fields of the platform's JSON payloads.

All of them return None when the expected shape is missing instead of raising;
callers decide whether a miss is an error.
"""

from typing import Any, Dict, Iterator, Optional

AUTOPLAY_ENABLED_KEY = "autoplayEnabled"
AUTOPLAY_CARD_KEY = "showAutoplayCard"

NEXT_EPISODE_SLOT = "nextepisode"
EPISODE_IMAGE_TYPE = "episode"


def _dig(obj: Any, *path) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(obj, list) or len(obj) <= key:
                return None
            obj = obj[key]
        else:
            if not isinstance(obj, dict):
                return None
            obj = obj.get(key)
        if obj is None:
            return None
    return obj


def autoplay_config(sections: Any) -> Optional[Dict[str, Any]]:
    cfg = _dig(sections, "sections", "bottom", "collections", "collectionList", 0, "autoplayConfig")
    return cfg if isinstance(cfg, dict) else None


def catalog_id(metadata: Any) -> Optional[str]:
    val = _dig(metadata, "catalogMetadata", "catalog", "id")
    return str(val) if val else None


def catalog_title(metadata: Any) -> Optional[str]:
    val = _dig(metadata, "catalogMetadata", "catalog", "title")
    return str(val).strip() if val else None


def default_url_set(resources: Any) -> Optional[Dict[str, Any]]:
    urls = _dig(resources, "playbackUrls")
    if not isinstance(urls, dict):
        return None
    set_id = urls.get("defaultUrlSetId")
    url_sets = urls.get("urlSets")
    if set_id is None or not isinstance(url_sets, dict):
        return None
    found = url_sets.get(set_id)
    return found if isinstance(found, dict) else None


def _strings(obj: Any) -> Iterator[str]:
    if isinstance(obj, str):
        yield obj
    elif isinstance(obj, dict):
        for v in obj.values():
            yield from _strings(v)
    elif isinstance(obj, list):
        for v in obj:
            yield from _strings(v)


def url_set_contains(url_set: Optional[Dict[str, Any]], mpd_id: str) -> bool:
    if not url_set or not mpd_id:
        return False
    needle = mpd_id.lower()
    return any(needle in s.lower() for s in _strings(url_set))


def first_carousel_item(next_up: Any) -> Optional[Dict[str, Any]]:
    item = _dig(next_up, "carousel", "items", 0)
    return item if isinstance(item, dict) else None


def candidate_title_id(item: Dict[str, Any]) -> Optional[str]:
    val = item.get("titleId")
    return str(val) if val else None


def is_next_episode_slot(item: Dict[str, Any]) -> bool:
    slot = _dig(item, "analytics", "slot")
    return isinstance(slot, str) and slot.replace("_", "").replace(" ", "").lower() == NEXT_EPISODE_SLOT


def is_episode_image(item: Dict[str, Any]) -> bool:
    kind = _dig(item, "image", "preferredType")
    return isinstance(kind, str) and kind.lower() == EPISODE_IMAGE_TYPE
