"""
UCI Engine Session – Stockfish (or any UCI engine) through python-chess
========================================================================

Lifecycle::

    UNINITIALIZED ──start()──▶ HANDSHAKING ──▶ READY ◀──▶ ANALYZING
                                   ▲              │            │
                                   └──restart()── FAULTED ◀────┘
    close() ──▶ CLOSED (from any state)

Design notes:
  • ``chess.engine.SimpleEngine`` owns the process, the ``uci`` handshake
    and the line protocol.  This module adds the state machine, bounded
    waits and the error taxonomy the worker relies on.
  • Every protocol wait has a deadline (``handshake_timeout`` at startup,
    ``sync_timeout`` afterwards).  A search that runs past
    ``analysis_timeout`` is stopped and whatever principal variations were
    reported so far are returned.  An engine that ignores ``stop`` is
    killed after a short grace period.
  • A terminated engine or a protocol timeout puts the session in
    ``FAULTED``.  Recovery is explicit: the owner calls ``restart()`` and
    then re-applies its options, which the session deliberately does not
    remember.
  • The session is not thread-safe; it belongs to one worker.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import subprocess
import threading
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import chess
import chess.engine

from chess_overlay.errors import (
    EngineError,
    EngineHandshakeFailed,
    EngineStreamClosed,
    EngineTimeout,
    RestartFailed,
)

log = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT = 5.0
SYNC_TIMEOUT = 2.0
ANALYSIS_TIMEOUT = 5.0
QUIT_GRACE = 1.0


class EngineState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    HANDSHAKING = "handshaking"
    READY = "ready"
    ANALYZING = "analyzing"
    FAULTED = "faulted"
    CLOSED = "closed"


# ── Result extraction ──────────────────────────────────────────────────

def pv_entry(info: Mapping[str, object]) -> Optional[Tuple[int, str]]:
    """``(multipv_index, first_pv_move)`` from one engine ``info`` report.

    Only reports carrying both ``multipv`` and a non-empty ``pv`` count.
    A single-line engine that never sends ``multipv`` is answered from its
    ``bestmove`` instead of its shallower intermediate lines.
    """
    index = info.get("multipv")
    pv = info.get("pv")
    if index is None or not pv:
        return None
    return int(index), pv[0].uci()


def rank_moves(pv_moves: Dict[int, str], bestmove: Optional[str], lines: int) -> List[str]:
    """Order parsed PV moves by index; fall back to ``bestmove`` alone."""
    if not pv_moves:
        return [bestmove] if bestmove else []
    return [pv_moves[i] for i in sorted(pv_moves)][:max(lines, 1)]


# ── Session ────────────────────────────────────────────────────────────

class UciEngine:
    """One UCI engine process and the session state around it.

    Parameters
    ----------
    command : str | Sequence[str]
        Engine executable, or a full argv list.
    handshake_timeout : float
        Seconds allowed for ``uciok`` and the first ``readyok``.
    sync_timeout : float
        Seconds allowed for every later protocol wait (``isready`` resync,
        search start, ``quit``).
    analysis_timeout : float
        Hard ceiling for one ``go depth`` search.
    """

    def __init__(
        self,
        command: Union[str, Sequence[str]],
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        sync_timeout: float = SYNC_TIMEOUT,
        analysis_timeout: float = ANALYSIS_TIMEOUT,
    ) -> None:
        self.command: List[str] = [command] if isinstance(command, str) else list(command)
        self.handshake_timeout = handshake_timeout
        self.sync_timeout = sync_timeout
        self.analysis_timeout = analysis_timeout

        self.name: Optional[str] = None
        self._state = EngineState.UNINITIALIZED
        self._engine: Optional[chess.engine.SimpleEngine] = None

    # ── Public API ─────────────────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_alive(self) -> bool:
        return self._engine is not None and self._engine.transport.get_returncode() is None

    def identifier(self) -> str:
        return " ".join(self.command)

    def start(self) -> "UciEngine":
        """Spawn the engine and complete the ``uci`` / ``isready`` handshake."""
        if self._state is not EngineState.UNINITIALIZED:
            raise EngineError(f"Cannot start engine in state {self._state.value}")
        self._launch()
        return self

    def set_option(self, name: str, value: object) -> None:
        self._apply_options({name: value})

    def configure(self, threads: Optional[int] = None, hash_mb: Optional[int] = None) -> None:
        """Apply the standard search options; ``None`` leaves one untouched.

        MultiPV is not set here: python-chess manages it per search.
        """
        options: Dict[str, object] = {}
        if threads is not None:
            options["Threads"] = threads
        if hash_mb is not None:
            options["Hash"] = hash_mb
        self._apply_options(options)

    def analyze(self, fen: str, depth: int, lines: int = 1) -> List[str]:
        """Search *fen* to *depth* and return up to *lines* moves, best first.

        Raises
        ------
        EngineStreamClosed
            The engine died or broke the protocol (session is ``FAULTED``).
        EngineTimeout
            The pre-search ``isready`` resync went unanswered (``FAULTED``).
        """
        engine = self._require_ready()
        try:
            board = chess.Board(fen)
        except ValueError as exc:
            raise EngineError(f"Invalid FEN {fen!r}: {exc}") from exc

        # Resync before every search
        with self._guard("isready"):
            engine.ping()

        pv_moves: Dict[int, str] = {}
        done = threading.Event()
        expired = threading.Event()

        self._state = EngineState.ANALYZING
        with self._guard("analysis"):
            limit = chess.engine.Limit(depth=depth)
            with engine.analysis(board, limit, multipv=lines) as analysis:
                watchdog = threading.Thread(
                    target=self._watch,
                    args=(engine, analysis, done, expired),
                    name="uci-watchdog",
                    daemon=True,
                )
                watchdog.start()
                try:
                    for info in analysis:
                        entry = pv_entry(info)
                        if entry is not None:
                            index, move = entry
                            pv_moves[index] = move
                    best = analysis.wait()
                finally:
                    done.set()
        self._state = EngineState.READY

        # A stopped search's bestmove is not a finished answer
        bestmove = None
        if not expired.is_set() and best.move:
            bestmove = best.move.uci()
        moves = rank_moves(pv_moves, bestmove, lines)
        log.debug("depth=%d lines=%d → %s", depth, lines, moves)
        return moves

    def restart(self) -> None:
        """Drop the current process, spawn a new one and handshake again.

        Options set before the restart are *not* re-applied.
        """
        log.info("Restarting engine %s", self.identifier())
        self._discard()
        try:
            self._launch()
        except EngineHandshakeFailed as exc:
            raise RestartFailed(f"Engine restart failed: {exc}") from exc
        log.info("Engine restarted successfully")

    def close(self) -> None:
        """Send ``quit`` and make sure the process is gone."""
        if self._state is EngineState.CLOSED:
            return
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.timeout = QUIT_GRACE
            try:
                engine.quit()
            except (chess.engine.EngineError, asyncio.TimeoutError, TimeoutError) as exc:
                log.debug("Engine did not quit cleanly: %r", exc)
            finally:
                engine.close()
        self._state = EngineState.CLOSED

    def __enter__(self) -> "UciEngine":
        if self._state is EngineState.UNINITIALIZED:
            self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ── Process management ─────────────────────────────────────────────

    def _launch(self) -> None:
        self._state = EngineState.HANDSHAKING
        try:
            engine = chess.engine.SimpleEngine.popen_uci(
                self.command,
                timeout=self.handshake_timeout,
                stderr=subprocess.DEVNULL,
            )
        except (asyncio.TimeoutError, TimeoutError) as exc:
            self._state = EngineState.FAULTED
            raise EngineHandshakeFailed(
                f"{self.identifier()} sent no uciok within {self.handshake_timeout:.1f}s"
            ) from exc
        except (chess.engine.EngineError, OSError) as exc:
            self._state = EngineState.FAULTED
            raise EngineHandshakeFailed(
                f"Could not launch engine {self.identifier()}: {exc}"
            ) from exc

        self._engine = engine
        self.name = engine.id.get("name")
        try:
            engine.ping()
        except (chess.engine.EngineError, asyncio.TimeoutError, TimeoutError) as exc:
            self._state = EngineState.FAULTED
            raise EngineHandshakeFailed(
                f"Handshake with {self.identifier()} failed: no readyok ({exc!r})"
            ) from exc

        engine.timeout = self.sync_timeout
        self._state = EngineState.READY
        log.info("Engine ready  %s", self.name or self.identifier())

    def _discard(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.close()

    def _apply_options(self, options: Mapping[str, object]) -> None:
        engine = self._require_ready()
        supported: Dict[str, object] = {}
        for name, value in options.items():
            option = engine.options.get(name)
            if option is None or option.is_managed():
                log.debug("Skipping option %s: not settable on %s", name, self.name)
                continue
            supported[name] = value
        if supported:
            with self._guard("setoption"):
                engine.configure(supported)

    def _require_ready(self) -> chess.engine.SimpleEngine:
        if self._state is EngineState.READY and self._engine is not None:
            return self._engine
        if self._state is EngineState.FAULTED:
            raise EngineStreamClosed("Engine session is faulted; restart required")
        raise EngineError(f"Engine not ready (state={self._state.value})")

    @contextlib.contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        """Translate python-chess failures into session faults."""
        try:
            yield
        except (asyncio.TimeoutError, TimeoutError) as exc:
            self._state = EngineState.FAULTED
            raise EngineTimeout(f"Engine did not answer {action} in time") from exc
        except chess.engine.EngineTerminatedError as exc:
            self._state = EngineState.FAULTED
            raise EngineStreamClosed(f"Engine terminated during {action}: {exc}") from exc
        except chess.engine.EngineError as exc:
            self._state = EngineState.FAULTED
            raise EngineStreamClosed(f"Engine protocol error during {action}: {exc}") from exc

    def _watch(
        self,
        engine: chess.engine.SimpleEngine,
        analysis: chess.engine.SimpleAnalysisResult,
        done: threading.Event,
        expired: threading.Event,
    ) -> None:
        """Watchdog body: stop a search at the deadline, kill it if it hangs on."""
        if done.wait(self.analysis_timeout):
            return
        expired.set()
        log.warning("Analysis exceeded %.1fs; stopping search", self.analysis_timeout)
        try:
            analysis.stop()
        except chess.engine.EngineError:
            return
        if not done.wait(QUIT_GRACE):
            log.error("Engine ignored stop; killing %s", self.identifier())
            engine.close()
