"""Helpers shared by the CLI commands."""

from pathlib import Path

import typer

from snap2map.calibration_config import CalibrationConfig, get_default_config
from snap2map.calibration_model import CalibrationModel
from snap2map.exceptions import CalibrationError
from snap2map.pairs_io import load_pairs


def load_config(
    config_file: Path | None,
    model_type: str | None = None,
    tps_lambda: float | None = None,
    seed: int | None = None,
) -> CalibrationConfig:
    """Load the config file (or defaults) and apply command-line overrides."""
    try:
        config = CalibrationConfig.from_yaml(str(config_file)) if config_file else get_default_config()
        overrides = config.to_dict()
        if model_type is not None:
            overrides["model_type"] = model_type
        if tps_lambda is not None:
            overrides["tps_lambda"] = tps_lambda
        if seed is not None:
            overrides["seed"] = seed
        return CalibrationConfig.from_dict(overrides)
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"Error: Invalid configuration: {e}", err=True)
        raise typer.Exit(1)


def fit_from_file(pairs_file: Path, config: CalibrationConfig) -> CalibrationModel:
    """Load pairs and fit them, turning failures into exit code 1."""
    try:
        pairs = load_pairs(str(pairs_file))
    except FileNotFoundError:
        typer.echo(f"Error: Pairs file not found: {pairs_file}", err=True)
        raise typer.Exit(1)
    except ValueError as e:
        typer.echo(f"Error: Failed to load pairs: {e}", err=True)
        raise typer.Exit(1)

    try:
        return CalibrationModel().set_pairs(pairs).fit_robust(config)
    except CalibrationError as e:
        typer.echo(f"Error: Calibration failed: {e}", err=True)
        raise typer.Exit(1)


PAIRS_FILE_ARGUMENT = typer.Argument(..., help="Path to pairs YAML file")
CONFIG_OPTION = typer.Option(None, "--config", help="Calibration configuration YAML file")
SEED_OPTION = typer.Option(None, help="Seed for RANSAC sampling")
