"""
Chess Overlay – Main Entry Point
=================================

Commands:

  1. **Run**           – Start the background analysis worker and the
                         preview window (or log moves with ``--headless``).
  2. **Recognize**     – Recognise a single image file, optionally ask the
                         engine, and print the FEN / moves.
  3. **Select-region** – Drag a rectangle over a screenshot to choose the
                         board region; saved to the config file.
  4. **Config**        – Print or change persisted settings.
  5. **Export**        – Convert an Ultralytics ``.pt`` detector to ONNX.

Usage examples
--------------

**Pick the board region once**::

    python chess_overlay.py select-region

**Live analysis**::

    python chess_overlay.py run --engine /usr/bin/stockfish --side both

**Single image**::

    python chess_overlay.py recognize \\
        --image game.png \\
        --engine stockfish \\
        --visualize

**Settings**::

    python chess_overlay.py config --set depth=18 --set lines=2
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time

import cv2

log = logging.getLogger("chess_overlay")


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _apply_overrides(store, args: argparse.Namespace) -> None:
    changes = {}
    for key in ("engine_path", "model_path", "side", "depth", "lines", "fps"):
        value = getattr(args, key, None)
        if value is not None:
            changes[key] = value
    if changes:
        store.update(**changes)


# ═══════════════════════════════════════════════════════════════════════
# Live analysis
# ═══════════════════════════════════════════════════════════════════════

def cmd_run(args: argparse.Namespace) -> None:
    """Run the worker loop with a preview window or headless logging."""
    from chess_overlay.capture import ScreenCapture
    from chess_overlay.config import ConfigStore
    from chess_overlay.inference.pipeline import RecognitionPipeline
    from chess_overlay.models.detector import YoloDetector
    from chess_overlay.overlay import OverlayPreview
    from chess_overlay.worker import AnalysisWorker

    store = ConfigStore.load(args.config)
    _apply_overrides(store, args)
    cfg = store.snapshot()
    if cfg.region is None:
        log.error("No board region configured; run 'select-region' first")
        sys.exit(1)

    detector = YoloDetector(cfg.model_path, input_size=cfg.input_size)
    pipeline = RecognitionPipeline(detector, min_board_size=cfg.min_board_size)
    worker = AnalysisWorker(store, ScreenCapture(), pipeline)

    store.update(running=True)
    worker.start()
    try:
        if args.headless:
            while True:
                frame = worker.results.take()
                if frame is not None:
                    for side, moves in frame.moves.items():
                        log.info("%-5s %s  %s", side, " ".join(moves), frame.fens[side])
                time.sleep(0.1)
        else:
            OverlayPreview(store, worker.results).run()
    except KeyboardInterrupt:
        pass
    finally:
        store.update(running=False)
        worker.stop(timeout=10.0)


# ═══════════════════════════════════════════════════════════════════════
# Single image
# ═══════════════════════════════════════════════════════════════════════

def cmd_recognize(args: argparse.Namespace) -> None:
    """Run the recognition pipeline (and optionally the engine) on an image."""
    from chess_overlay.config import load_config
    from chess_overlay.engine.uci import UciEngine
    from chess_overlay.inference.pipeline import RecognitionPipeline
    from chess_overlay.models.detector import YoloDetector

    cfg = load_config(args.config)

    # Load image
    image = cv2.imread(args.image)
    if image is None:
        log.error("Could not read image: %s", args.image)
        sys.exit(1)

    # Build pipeline
    detector = YoloDetector(args.model_path or cfg.model_path, input_size=cfg.input_size)
    pipeline = RecognitionPipeline(
        detector,
        confidence_threshold=cfg.confidence_threshold,
        iou_threshold=cfg.iou_threshold,
        min_board_size=cfg.min_board_size,
    )

    # Run
    result = pipeline.recognize(image)
    sides = [args.side] if args.side != "both" else ["white", "black"]

    if result.is_valid and args.engine:
        with UciEngine(args.engine, analysis_timeout=cfg.analysis_timeout) as engine:
            engine.configure(threads=cfg.threads, hash_mb=cfg.hash_mb)
            for side in sides:
                result.moves[side] = engine.analyze(result.fen(side), cfg.depth, cfg.lines)

    # Output
    print("\n" + "=" * 60)
    print("  CHESS OVERLAY RESULT")
    print("=" * 60)
    print(f"  Detections     : {len(result.detections)}")
    print(f"  Orientation    : {result.orientation.value}")
    print(f"  Placement      : {result.placement}")
    print(f"  Valid position : {result.is_valid}")
    for side in sides:
        if result.is_valid:
            print(f"  FEN ({side:5s})   : {result.fen(side)}")
        if side in result.moves:
            print(f"  Moves ({side:5s}) : {' '.join(result.moves[side]) or '-'}")
    print("=" * 60 + "\n")

    # Visualise
    if args.visualize or args.save_debug:
        pipeline.visualize(image, result, show=args.visualize, save_path=args.save_debug)


# ═══════════════════════════════════════════════════════════════════════
# Region selection & settings
# ═══════════════════════════════════════════════════════════════════════

def cmd_select_region(args: argparse.Namespace) -> None:
    """Drag-select the board region on a screenshot of the primary monitor."""
    from chess_overlay.capture import ScreenCapture
    from chess_overlay.config import ConfigStore
    from chess_overlay.overlay import select_region

    store = ConfigStore.load(args.config)
    capture = ScreenCapture()
    try:
        screenshot, origin = capture.grab_monitor()
    finally:
        capture.close()

    region = select_region(screenshot, origin=origin)
    if region is None:
        log.warning("Selection cancelled; region unchanged")
        sys.exit(1)

    store.update(region=region)
    store.save()
    log.info("Board region set to %s", region)


def _parse_setting(item: str):
    key, sep, raw = item.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Expected key=value, got {item!r}")
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw
    return key.strip(), value


def cmd_config(args: argparse.Namespace) -> None:
    """Show settings, applying any ``--set key=value`` first."""
    from chess_overlay.config import ConfigStore

    store = ConfigStore.load(args.config)
    if args.set:
        try:
            cfg = store.update(**dict(args.set))
        except (KeyError, ValueError, TypeError) as exc:
            log.error("Invalid setting: %s", exc)
            sys.exit(1)
        store.save()
    else:
        cfg = store.snapshot()
    print(json.dumps(cfg.to_dict(), indent=2))


# ═══════════════════════════════════════════════════════════════════════
# ONNX Export
# ═══════════════════════════════════════════════════════════════════════

def cmd_export(args: argparse.Namespace) -> None:
    """Export a trained YOLOv8 detector to ONNX."""
    from chess_overlay.models.detector import export_to_onnx

    export_to_onnx(args.weights, output_path=args.output, img_size=args.img_size)


# ═══════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chess_overlay",
        description="Screen chessboard recognition with engine move arrows.",
    )
    parser.add_argument("--config", default="config.json",
                        help="Settings file (default: config.json)")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Debug logging")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # ── run ──
    p_run = sub.add_parser("run", help="Live analysis of the board region")
    p_run.add_argument("--engine", dest="engine_path", default=None,
                       help="UCI engine executable")
    p_run.add_argument("--model", dest="model_path", default=None,
                       help="Detector .onnx file")
    p_run.add_argument("--side", choices=["white", "black", "both"], default=None)
    p_run.add_argument("--depth", type=int, default=None)
    p_run.add_argument("--lines", type=int, default=None)
    p_run.add_argument("--fps", type=int, default=None)
    p_run.add_argument("--headless", action="store_true",
                       help="Log moves instead of opening a window")

    # ── recognize ──
    p_rec = sub.add_parser("recognize", help="Recognise an image file")
    p_rec.add_argument("--image", required=True, help="Path to image")
    p_rec.add_argument("--model", dest="model_path", default=None,
                       help="Detector .onnx file")
    p_rec.add_argument("--engine", default=None,
                       help="UCI engine executable (omit to skip analysis)")
    p_rec.add_argument("--side", choices=["white", "black", "both"], default="white")
    p_rec.add_argument("--visualize", action="store_true",
                       help="Show debug visualisation")
    p_rec.add_argument("--save-debug", default=None,
                       help="Save debug image to path")

    # ── select-region ──
    sub.add_parser("select-region", help="Drag-select the board region")

    # ── config ──
    p_cfg = sub.add_parser("config", help="Show or change settings")
    p_cfg.add_argument("--set", action="append", type=_parse_setting, default=[],
                       metavar="KEY=VALUE", help="Setting to change (repeatable)")

    # ── export ──
    p_exp = sub.add_parser("export", help="Export a YOLOv8 .pt detector to ONNX")
    p_exp.add_argument("--weights", required=True)
    p_exp.add_argument("--output", default="best.onnx")
    p_exp.add_argument("--img-size", type=int, default=640)

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    _setup_logging(args.verbose)

    dispatch = {
        "run": cmd_run,
        "recognize": cmd_recognize,
        "select-region": cmd_select_region,
        "config": cmd_config,
        "export": cmd_export,
    }

    dispatch[args.command](args)


if __name__ == "__main__":
    main()
