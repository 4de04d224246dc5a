"""
Screen Capture – mss grab of the configured board region.

Multi-monitor layouts are not handled: regions are in the coordinate
space ``mss`` reports, and full-screen grabs use the primary monitor.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import cv2
import mss
import numpy as np
from mss.exception import ScreenShotError

from chess_overlay.config import Region
from chess_overlay.errors import CaptureUnavailable

log = logging.getLogger(__name__)


class ScreenCapture:
    """Thin wrapper around one ``mss`` instance.

    ``mss`` handles are bound to the thread that created them, so the
    instance is created lazily by the first ``grab`` call.
    """

    def __init__(self) -> None:
        self._sct: Optional[mss.base.MSSBase] = None

    def _session(self) -> "mss.base.MSSBase":
        if self._sct is None:
            try:
                self._sct = mss.mss()
            except ScreenShotError as exc:
                raise CaptureUnavailable(f"No display available: {exc}") from exc
        return self._sct

    def grab(self, region: Region) -> np.ndarray:
        """Capture *region* and return it as a BGR image."""
        if region.is_empty:
            raise CaptureUnavailable(f"Empty capture region: {region}")
        monitor = {
            "left": region.x,
            "top": region.y,
            "width": region.width,
            "height": region.height,
        }
        try:
            shot = self._session().grab(monitor)
        except ScreenShotError as exc:
            raise CaptureUnavailable(f"Screen grab failed: {exc}") from exc
        return cv2.cvtColor(np.asarray(shot), cv2.COLOR_BGRA2BGR)

    def grab_monitor(self) -> Tuple[np.ndarray, Tuple[int, int]]:
        """Capture the primary monitor; returns the image and its screen origin."""
        sct = self._session()
        if len(sct.monitors) < 2:
            raise CaptureUnavailable("No monitor found")
        monitor = sct.monitors[1]
        try:
            shot = sct.grab(monitor)
        except ScreenShotError as exc:
            raise CaptureUnavailable(f"Screen grab failed: {exc}") from exc
        image = cv2.cvtColor(np.asarray(shot), cv2.COLOR_BGRA2BGR)
        return image, (monitor["left"], monitor["top"])

    def close(self) -> None:
        if self._sct is not None:
            self._sct.close()
            self._sct = None
