"""
Root entry point – delegates to the chess_overlay package.

Usage:
    python chess_overlay.py select-region
    python chess_overlay.py run        --engine stockfish --side both
    python chess_overlay.py recognize  --image game.png --engine stockfish
"""

from chess_overlay.main import main

if __name__ == "__main__":
    main()
