"""
Utility functions for the LiveTrain package.
"""

from .helpers import clamp, format_update_time, haversine_distance_m, normalize_train_ids

__all__ = ["clamp", "format_update_time", "haversine_distance_m", "normalize_train_ids"]
