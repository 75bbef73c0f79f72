"""
Map components for the LiveTrain package.

This module contains the marker reconciler, the animation engine and the
Qt map controller that ties them to the data service.
"""

from .animation_engine import AnimationEngine, Easing
from .marker_reconciler import MapAdapter, MarkerReconciler, MarkerStyle
from .train_map_controller import SelectionApi, TrainMapController

__all__ = [
    "AnimationEngine",
    "Easing",
    "MapAdapter",
    "MarkerReconciler",
    "MarkerStyle",
    "SelectionApi",
    "TrainMapController",
]
