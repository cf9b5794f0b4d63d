"""CLI module for snap2map.

Provides the `snap2map` command-line interface for fitting a map-photo
calibration and projecting positions through it.
"""

from snap2map.cli.main import app

__all__ = ["app"]
