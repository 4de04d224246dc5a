"""
Chess Overlay
=============

Live chess move suggestions for a board shown on screen.  A captured
screen region is run through a YOLOv8 board/piece detector, turned into a
FEN position, searched by a UCI engine, and the best moves are projected
back onto the screen as arrows.

Architecture:
    1. Detection Decoding  – raw YOLO tensor → detections, class-agnostic NMS
    2. Board Reconstruction – board anchor, 8×8 grid, orientation, king check
    3. Engine Session       – UCI subprocess with bounded reads and restart
    4. Move Geometry        – UCI moves → screen-space arrow segments
"""

__version__ = "1.0.0"
