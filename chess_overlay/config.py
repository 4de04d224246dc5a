"""
Configuration – Persisted Settings & Shared Snapshot Store
==========================================================

Settings live in a JSON file (``config.json`` by default).  Older
installs only stored the board region in ``region.json``; that file is
still read when no ``config.json`` exists.

At runtime a single ``ConfigStore`` is shared between the analysis
worker and the presentation side.  The worker copies a ``snapshot()``
once per cycle and never holds the lock across capture, inference or an
engine call.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

log = logging.getLogger(__name__)

CONFIG_FILE = "config.json"
LEGACY_REGION_FILE = "region.json"

SIDES = ("white", "black", "both")


@dataclass
class Region:
    """Screen rectangle to capture, in screen pixels."""
    x: int
    y: int
    width: int
    height: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Region":
        return cls(
            x=int(data["x"]),
            y=int(data["y"]),
            width=int(data["width"]),
            height=int(data["height"]),
        )

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0


@dataclass
class AppConfig:
    """All user-tunable settings."""
    region: Optional[Region] = None
    depth: int = 15                      # engine search depth
    lines: int = 3                       # MultiPV lines per side
    confidence_threshold: float = 0.5    # detector score cut-off
    iou_threshold: float = 0.45          # NMS overlap cut-off
    fps: int = 2                         # analysis cycles per second
    side: str = "white"                  # "white" | "black" | "both"
    running: bool = False
    threads: int = 4                     # engine Threads option
    hash_mb: int = 256                   # engine Hash option
    engine_path: str = "stockfish"
    model_path: str = "best.onnx"
    input_size: int = 640
    min_board_size: float = 0.2
    analysis_timeout: float = 5.0
    arrow_scale: float = 1.0             # display pixel density

    def sides(self) -> List[str]:
        """Sides to analyse this cycle."""
        if self.side == "both":
            return ["white", "black"]
        return [self.side]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        """Build from parsed JSON; unknown keys are ignored, bad values clamped."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known and k != "region"}
        cfg = cls(**values)
        if data.get("region"):
            cfg.region = Region.from_dict(data["region"])
        return cfg.clamped()

    def clamped(self) -> "AppConfig":
        cfg = copy.deepcopy(self)
        cfg.depth = min(max(int(cfg.depth), 1), 30)
        cfg.lines = min(max(int(cfg.lines), 1), 5)
        cfg.confidence_threshold = min(max(float(cfg.confidence_threshold), 0.05), 1.0)
        cfg.iou_threshold = min(max(float(cfg.iou_threshold), 0.0), 1.0)
        cfg.fps = max(int(cfg.fps), 1)
        cfg.threads = max(int(cfg.threads), 1)
        cfg.hash_mb = max(int(cfg.hash_mb), 1)
        cfg.analysis_timeout = max(float(cfg.analysis_timeout), 0.1)
        cfg.arrow_scale = max(float(cfg.arrow_scale), 0.1)
        if cfg.side not in SIDES:
            log.warning("Unknown side %r, falling back to 'white'", cfg.side)
            cfg.side = "white"
        return cfg


# ── Persistence ────────────────────────────────────────────────────────

def load_config(path: str | Path = CONFIG_FILE) -> AppConfig:
    """Load settings, falling back to ``region.json`` and then defaults."""
    path = Path(path)
    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object")
            return AppConfig.from_dict(data)
        except (OSError, ValueError, TypeError, KeyError) as exc:
            log.warning("Ignoring unreadable config %s: %s", path, exc)

    cfg = AppConfig()
    legacy = path.with_name(LEGACY_REGION_FILE)
    if legacy.exists():
        try:
            with open(legacy) as f:
                cfg.region = Region.from_dict(json.load(f))
            log.info("Loaded board region from legacy %s", legacy)
        except (OSError, ValueError, TypeError, KeyError) as exc:
            log.warning("Ignoring unreadable region file %s: %s", legacy, exc)
    return cfg


def save_config(cfg: AppConfig, path: str | Path = CONFIG_FILE) -> None:
    path = Path(path)
    with open(path, "w") as f:
        json.dump(cfg.to_dict(), f, indent=2)
    log.info("Saved settings to %s", path)


# ── Shared store ───────────────────────────────────────────────────────

class ConfigStore:
    """Lock-guarded holder of the live ``AppConfig``."""

    def __init__(self, config: Optional[AppConfig] = None,
                 path: str | Path = CONFIG_FILE) -> None:
        self._config = config if config is not None else AppConfig()
        self._lock = threading.Lock()
        self.path = Path(path)

    @classmethod
    def load(cls, path: str | Path = CONFIG_FILE) -> "ConfigStore":
        return cls(load_config(path), path)

    def snapshot(self) -> AppConfig:
        """Independent copy of the current settings."""
        with self._lock:
            return copy.deepcopy(self._config)

    def update(self, **changes: Any) -> AppConfig:
        """Apply *changes* (validated and clamped) and return the new snapshot."""
        with self._lock:
            data = self._config.to_dict()
            for key, value in changes.items():
                if key not in data:
                    raise KeyError(f"Unknown setting: {key}")
                data[key] = asdict(value) if isinstance(value, Region) else value
            self._config = AppConfig.from_dict(data)
            return copy.deepcopy(self._config)

    def toggle_side(self) -> str:
        """Flip between analysing White and Black (the ``b`` hotkey)."""
        with self._lock:
            self._config.side = "black" if self._config.side == "white" else "white"
            side = self._config.side
        log.info("Toggled side: %s", side)
        return side

    def save(self) -> None:
        save_config(self.snapshot(), self.path)
