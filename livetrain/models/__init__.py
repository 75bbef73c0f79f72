"""
Data models for the LiveTrain package.

This module contains the normalised structures shared by the data service,
the marker reconciler and the map controller.
"""

from .train_data import JourneyDetails, Position, TrainDetails, TrainRecord, TrainStatus

__all__ = ["JourneyDetails", "Position", "TrainDetails", "TrainRecord", "TrainStatus"]
