"""Rewrites of DASH manifest documents before the player sees them."""

import io
import logging
import re
import xml.etree.ElementTree as ET
from typing import Optional

from forcenext.errors import MalformedExchange

XML_DECLARATION = "<?xml version=\"1.0\" encoding=\"UTF-8\"?>\n"
AD_PERIOD_PATTERN = re.compile(r"(^|[-_:])(ad|ads|advert)([-_:]|\d|$)", re.IGNORECASE)


def _register_namespaces(raw: bytes) -> None:
    # keep the document's own prefixes (default DASH namespace included) on output
    for _, (prefix, uri) in ET.iterparse(io.BytesIO(raw), events=("start-ns",)):
        try:
            ET.register_namespace(prefix, uri)
        except ValueError:
            pass


def _ns(root: ET.Element) -> str:
    if root.tag.startswith("{"):
        return root.tag[1:].split("}", 1)[0]
    return ""


def _q(ns: str, name: str) -> str:
    return f"{{{ns}}}{name}" if ns else name


def _is_video_set(aset: ET.Element, ns: str) -> bool:
    if aset.get("contentType") == "video":
        return True
    if (aset.get("mimeType") or "").startswith("video/"):
        return True
    rep = aset.find(_q(ns, "Representation"))
    return rep is not None and (rep.get("mimeType") or "").startswith("video/")


def _bandwidth(rep: ET.Element) -> int:
    try:
        return int(rep.get("bandwidth") or 0)
    except ValueError:
        return 0


def force_highest_resolution(root: ET.Element) -> bool:
    """Keep only the highest-bandwidth representation of every video adaptation set."""
    ns = _ns(root)
    changed = False
    for aset in root.iter(_q(ns, "AdaptationSet")):
        if not _is_video_set(aset, ns):
            continue
        reps = aset.findall(_q(ns, "Representation"))
        if len(reps) < 2:
            continue
        best = max(reps, key=_bandwidth)
        for rep in reps:
            if rep is not best:
                aset.remove(rep)
                changed = True
    return changed


def strip_ad_periods(root: ET.Element) -> bool:
    ns = _ns(root)
    periods = root.findall(_q(ns, "Period"))
    ads = [p for p in periods if AD_PERIOD_PATTERN.search(p.get("id") or "")]
    # a manifest made only of ad periods is left alone
    if not ads or len(ads) == len(periods):
        return False
    for p in ads:
        root.remove(p)
    logging.debug(f"Removed {len(ads)} ad period(s) from manifest")
    return True


def transform_manifest(
    xml_text: str, highest_resolution: bool = False, strip_ads: bool = False
) -> Optional[str]:
    """Return the rewritten document, or None when nothing was changed."""
    if not (highest_resolution or strip_ads):
        return None
    raw = xml_text.encode("utf-8")
    try:
        _register_namespaces(raw)
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise MalformedExchange(f"manifest is not valid XML: {e}")

    changed = False
    if highest_resolution:
        changed = force_highest_resolution(root) or changed
    if strip_ads:
        changed = strip_ad_periods(root) or changed
    if not changed:
        return None
    return XML_DECLARATION + ET.tostring(root, encoding="unicode")
