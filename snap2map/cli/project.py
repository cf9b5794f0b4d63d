"""Projection commands: place a fix on the photo, read a pixel back, map errors."""

from pathlib import Path

import numpy as np
import typer

from snap2map.cli.common import (
    CONFIG_OPTION,
    PAIRS_FILE_ARGUMENT,
    SEED_OPTION,
    fit_from_file,
    load_config,
)
from snap2map.cli.main import app
from snap2map.exceptions import CalibrationError
from snap2map.pixel_point import PixelPoint
from snap2map.position_projector import PositionFix, PositionProjector
from snap2map.types import Degrees, Meters


@app.command("project")
def project_command(
    pairs_file: Path = PAIRS_FILE_ARGUMENT,
    lat: float = typer.Option(..., help="Latitude in decimal degrees"),
    lon: float = typer.Option(..., help="Longitude in decimal degrees"),
    accuracy: float = typer.Option(0.0, help="Reported GPS accuracy radius (meters)"),
    config_file: Path | None = CONFIG_OPTION,
    seed: int | None = SEED_OPTION,
) -> None:
    """
    Project a GPS fix to a pixel on the map photo.

    Example:
        snap2map project pairs.yaml --lat 39.6405 --lon -0.2302 --accuracy 8
    """
    calibration = fit_from_file(pairs_file, load_config(config_file, seed=seed))
    try:
        fix = PositionFix(Degrees(lat), Degrees(lon), Meters(accuracy))
        position = PositionProjector(calibration).to_pixel(fix)
    except (CalibrationError, ValueError) as e:
        typer.echo(f"Error: Projection failed: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Pixel: ({position.pixel.x:.2f}, {position.pixel.y:.2f})")
    typer.echo(f"sigma_map: {position.sigma_map_m:.2f} m")
    typer.echo(f"sigma_total: {position.sigma_total_m:.2f} m")
    typer.echo(f"Tier: {position.tier}")
    typer.echo(f"Radius: {position.radius_px:.1f} px")
    if position.low_accuracy:
        typer.echo("Warning: low accuracy", err=True)


@app.command("unproject")
def unproject_command(
    pairs_file: Path = PAIRS_FILE_ARGUMENT,
    x: float = typer.Option(..., help="Pixel x (column)"),
    y: float = typer.Option(..., help="Pixel y (row, increasing down)"),
    config_file: Path | None = CONFIG_OPTION,
    seed: int | None = SEED_OPTION,
) -> None:
    """
    Project a pixel on the map photo to a geodetic position.

    Example:
        snap2map unproject pairs.yaml --x 640 --y 480
    """
    calibration = fit_from_file(pairs_file, load_config(config_file, seed=seed))
    geo = calibration.project_forward(PixelPoint(x, y))
    typer.echo(f"Latitude: {geo.lat:.7f}")
    typer.echo(f"Longitude: {geo.lon:.7f}")


@app.command("heatmap")
def heatmap_command(
    pairs_file: Path = PAIRS_FILE_ARGUMENT,
    width: int = typer.Option(..., min=1, help="Photo width in pixels"),
    height: int = typer.Option(..., min=1, help="Photo height in pixels"),
    step: int = typer.Option(50, min=1, help="Grid spacing in pixels"),
    config_file: Path | None = CONFIG_OPTION,
    seed: int | None = SEED_OPTION,
) -> None:
    """
    Print the local RMSE (meters) on a pixel grid as CSV.

    Columns are x, y, local_rmse_m; rows run left to right, top to bottom.

    Example:
        snap2map heatmap pairs.yaml --width 1600 --height 1200 --step 100 > heat.csv
    """
    calibration = fit_from_file(pairs_file, load_config(config_file, seed=seed))
    xs = np.arange(0, width, step, dtype=np.float64)
    ys = np.arange(0, height, step, dtype=np.float64)
    grid = np.array([(gx, gy) for gy in ys for gx in xs])
    values = calibration.heatmap(grid)

    typer.echo("x,y,local_rmse_m")
    for (gx, gy), value in zip(grid, values):
        typer.echo(f"{gx:.0f},{gy:.0f},{value:.4f}")
