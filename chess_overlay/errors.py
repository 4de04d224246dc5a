"""
Error Taxonomy
==============

Every failure the analysis pipeline can raise derives from
``ChessOverlayError`` so the worker loop can catch per-cycle problems at
one boundary.

A wrong king count is *not* an exception: the board reconstructor returns
``None`` for it, because it is the normal state while a piece is in
mid-air.
"""

from __future__ import annotations


class ChessOverlayError(Exception):
    """Base class for all chess_overlay errors."""


# ── Collaborators ─────────────────────────────────────────────────────

class CaptureUnavailable(ChessOverlayError):
    """No display surface (or monitor) could be captured."""


class InferenceError(ChessOverlayError):
    """The detection model failed or produced unusable output."""


class InputShapeError(InferenceError):
    """Raw detector output does not have the ``[1, 4+C, N]`` layout."""


# ── Engine ────────────────────────────────────────────────────────────

class EngineError(ChessOverlayError):
    """Base class for UCI engine session failures."""


class EngineHandshakeFailed(EngineError):
    """The engine did not answer ``uciok`` / ``readyok`` during startup."""


class EngineTimeout(EngineError):
    """A synchronisation wait (``isready``) ran past its deadline."""


class EngineStreamClosed(EngineError):
    """The engine's pipes broke or its output stream hit EOF."""


class RestartFailed(EngineError):
    """Killing and respawning the engine did not yield a ready session."""
