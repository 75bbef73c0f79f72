"""
LiveTrain live train positions

Polls the NS virtual-train API, normalises and caches the vehicle positions
and keeps a set of animated map markers in sync with them.

Features:
- Auto-refresh with overlap prevention and a consecutive-failure breaker
- One-way fallback to a secondary HTTP transport
- Marker reconciliation with selection-aware styling
- Smooth per-train position animation with easing
"""

__version__ = "1.0.0"
__author__ = "LiveTrain Development Team"
__description__ = "Live train positions for dashboard map widgets"
