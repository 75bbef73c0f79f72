"""
Main entry point for the LiveTrain headless monitor.

This module sets up logging, loads the configuration and runs the map
controller against a logging map adapter, so the refresh pipeline can be
watched from a terminal without a map widget.
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from PySide6.QtCore import QCoreApplication

from livetrain import __version__
from livetrain.managers.config_manager import ConfigManager, ConfigurationError, REFRESH_PRESETS
from livetrain.models.train_data import Position, TrainRecord
from livetrain.ui.marker_reconciler import MapAdapter
from livetrain.ui.train_map_controller import TrainMapController
from livetrain.utils.logging_setup import setup_logging

logger = logging.getLogger("livetrain.monitor")


class LoggingMapAdapter(MapAdapter):
    """Map adapter that records markers in memory and logs each operation."""

    def __init__(self):
        self.markers: Dict[str, Dict[str, Any]] = {}

    def create_marker(self, train_id, position, style, popup_html, on_activate):
        self.markers[train_id] = {"position": position, "style": style}
        logger.debug(f"Marker created: {train_id} at {position.as_tuple()}")
        return train_id

    def set_position(self, handle, position: Position):
        if handle in self.markers:
            self.markers[handle]["position"] = position

    def set_style(self, handle, style):
        if handle in self.markers:
            self.markers[handle]["style"] = style

    def set_popup(self, handle, popup_html):
        pass

    def remove_marker(self, handle):
        self.markers.pop(handle, None)
        logger.debug(f"Marker removed: {handle}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Monitor live NS train positions")
    parser.add_argument("--config", help="Path to the configuration file")
    parser.add_argument("--api-key", help="API subscription key (overrides config and environment)")
    parser.add_argument(
        "--interval",
        choices=[*REFRESH_PRESETS, "custom"],
        help="Refresh interval preset",
    )
    parser.add_argument("--seconds", type=int, help="Interval for the custom preset")
    parser.add_argument("--train", action="append", default=[], help="Train number to follow (repeatable)")
    parser.add_argument("--once", action="store_true", help="Fetch once and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--no-log-file", action="store_true", help="Log to the console only")
    parser.add_argument("--version", action="version", version=f"LiveTrain {__version__}")
    return parser.parse_args(argv)


def print_snapshot(trains: List[TrainRecord]) -> None:
    for train in trains:
        data = train.to_display_dict()
        print(
            f"{data['number']:>8}  {data['type']:<10} {data['origin']} -> {data['destination']}  "
            f"{data['delay']:<9} {data['speed']:>9}  ({train.position.lat:.4f}, {train.position.lng:.4f})"
        )


async def run(args: argparse.Namespace) -> int:
    """Run the monitor until interrupted; returns the exit code."""
    config_manager = ConfigManager(args.config)
    config = config_manager.load_config()

    if args.api_key:
        config.api.api_key = args.api_key
    if args.interval:
        config.refresh.interval_type = args.interval
    if args.seconds is not None:
        config.refresh.interval_seconds = args.seconds
    if args.train:
        config.display.filter_by_selection = True

    controller = TrainMapController(config, LoggingMapAdapter())
    controller.status_changed.connect(lambda message: logger.warning(message))
    controller.error_occurred.connect(lambda message: logger.error(message))
    controller.configuration_invalid.connect(
        lambda errors: logger.error(f"Configuration invalid: {'; '.join(errors)}")
    )
    controller.trains_updated.connect(print_snapshot)

    try:
        trains = await controller.refresh(args.train or None)
        if args.once:
            return 0 if trains is not None else 1

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handler support
                pass

        if not controller.start_auto_refresh():
            logger.warning("Automatic refresh is disabled, exiting")
            return 0
        await stop.wait()
        return 0
    finally:
        await controller.destroy()


def main(argv: Optional[List[str]] = None) -> int:
    """Main application entry point."""
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, to_file=not args.no_log_file)
    logger.info(f"Starting LiveTrain monitor {__version__}")

    app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
    app.setApplicationName("LiveTrain")
    app.setApplicationVersion(__version__)

    try:
        return asyncio.run(run(args))
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        for error in e.errors:
            logger.error(f"  {error}")
        return 2
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
