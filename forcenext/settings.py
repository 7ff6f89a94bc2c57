import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from forcenext import config


def _default_options() -> Dict[str, Any]:
    return {
        "forcePlayNextEpisodeEnabled": True,
        "enableAutoplayEnabled": True,
        "removeAdDataEnabled": False,
        "forceHighestResolutionEnabled": False,
        "hideNextupCardEnabled": False,
        "preventsTransitionsToRecommendedVideos": True,
        "scriptVersion": config.SCRIPT_VERSION,
    }


@dataclass(frozen=True)
class Options:
    """Immutable snapshot of the feature flags, taken once per session."""

    force_play_next_episode: bool = True
    enable_autoplay: bool = True
    remove_ad_data: bool = False
    force_highest_resolution: bool = False
    hide_nextup_card: bool = False
    prevent_recommended_transitions: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Options":
        d = _default_options()
        d.update({k: data[k] for k in data if k in d})
        return cls(
            force_play_next_episode=bool(d["forcePlayNextEpisodeEnabled"]),
            enable_autoplay=bool(d["enableAutoplayEnabled"]),
            remove_ad_data=bool(d["removeAdDataEnabled"]),
            force_highest_resolution=bool(d["forceHighestResolutionEnabled"]),
            hide_nextup_card=bool(d["hideNextupCardEnabled"]),
            prevent_recommended_transitions=bool(d["preventsTransitionsToRecommendedVideos"]),
        )


# === OPTIONS FILE ===
def load_options_file(path: Optional[str] = None) -> Dict[str, Any]:
    path = path or config.OPTIONS_DB_FILE
    try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
                if isinstance(data, dict):
                    d = _default_options()
                    d.update({k: data[k] for k in data if k in d})
                    return d
        return _default_options()
    except json.JSONDecodeError:
        logging.error(f"{os.path.basename(path)} is corrupt, using defaults.")
        return _default_options()
    except Exception as e:
        logging.warning(f"Options failed to load: {e}")
        return _default_options()


def save_options_file(options: Dict[str, Any], path: Optional[str] = None) -> bool:
    path = path or config.OPTIONS_DB_FILE
    try:
        d = load_options_file(path)
        for k in d.keys():
            if k in options:
                d[k] = options[k]
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(d, f, indent=2, ensure_ascii=False)
        return True
    except Exception as e:
        logging.error(f"Saving options failed: {e}")
        return False


def update_option_version(path: Optional[str] = None, version: str = config.SCRIPT_VERSION) -> bool:
    """Merge new defaults into a file written by an older version. Returns True if rewritten."""
    path = path or config.OPTIONS_DB_FILE
    stored: Dict[str, Any] = {}
    try:
        if os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
                if isinstance(data, dict):
                    stored = data
    except Exception as e:
        logging.warning(f"Options version check failed: {e}")

    if stored.get("scriptVersion") == version:
        return False
    merged = _default_options()
    merged.update({k: stored[k] for k in stored if k in merged})
    merged["scriptVersion"] = version
    logging.info(f"Options migrated to version {version}")
    return save_options_file(merged, path)


def load_options(path: Optional[str] = None) -> Options:
    return Options.from_dict(load_options_file(path))


# === CARRY-OVER VOLUME ===
class CarryOverVolume:
    """Last known volume, persisted across a forced navigation."""

    def __init__(self, path: Optional[str] = None):
        self.path = path or config.STATE_DB_FILE

    def _read(self) -> Dict[str, Any]:
        try:
            if os.path.exists(self.path):
                with open(self.path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                    if isinstance(data, dict):
                        return data
            return {}
        except json.JSONDecodeError:
            logging.error(f"{os.path.basename(self.path)} is corrupt.")
            return {}
        except Exception as e:
            logging.error(f"Error loading state: {e}")
            return {}

    def _write(self, data: Dict[str, Any]) -> bool:
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            return True
        except Exception as e:
            logging.error(f"Error saving state: {e}")
            return False

    def save(self, volume: float) -> bool:
        data = self._read()
        data.update({"lastVolume": float(volume), "muted": True, "timestamp": time.time()})
        return self._write(data)

    def load(self) -> Optional[float]:
        val = self._read().get("lastVolume")
        return parse_volume(val)

    def pending(self) -> bool:
        return bool(self._read().get("muted"))

    def clear(self) -> bool:
        data = self._read()
        if not data.get("muted"):
            return True
        data["muted"] = False
        return self._write(data)


def parse_volume(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        vol = float(raw)
    except (TypeError, ValueError):
        return None
    if vol != vol or vol < 0 or vol > 1:
        return None
    return vol
