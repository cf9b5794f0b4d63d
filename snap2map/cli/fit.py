"""Fit command: robust calibration from a pairs file."""

from pathlib import Path

import typer

from snap2map.cli.common import (
    CONFIG_OPTION,
    PAIRS_FILE_ARGUMENT,
    SEED_OPTION,
    fit_from_file,
    load_config,
)
from snap2map.cli.main import app
from snap2map.pairs_io import save_model
from snap2map.transforms import model_to_dict


@app.command("fit")
def fit_command(
    pairs_file: Path = PAIRS_FILE_ARGUMENT,
    config_file: Path | None = CONFIG_OPTION,
    model_type: str | None = typer.Option(
        None, help="Model class: similarity, affine or homography (default: by pair count)"
    ),
    tps_lambda: float | None = typer.Option(None, help="Enable TPS refinement with this lambda"),
    seed: int | None = SEED_OPTION,
    output: Path | None = typer.Option(None, help="Write the fitted model to this YAML file"),
) -> None:
    """
    Fit a calibration and print its quality.

    Prints the fitted model, RMSE and maximum residual in meters, followed by
    a per-pair residual table. Pairs marked "outlier" fell outside the
    RANSAC consensus set.

    Example:
        snap2map fit pairs.yaml
        snap2map fit pairs.yaml --model-type affine --seed 42 --output model.yaml
    """
    config = load_config(config_file, model_type, tps_lambda, seed)
    calibration = fit_from_file(pairs_file, config)
    result = calibration.fit_result

    typer.echo(f"Model: {result.model_type.value}")
    for key, value in model_to_dict(result.model).items():
        if key != "type":
            typer.echo(f"  {key}: {value}")
    typer.echo(f"State: {calibration.state.value}")
    typer.echo(f"RMSE: {calibration.rmse:.3f} m")
    typer.echo(f"Max residual: {result.max_residual:.3f} m")
    typer.echo(f"Inliers: {result.num_inliers}/{len(calibration.active_pairs)}")
    typer.echo("")
    typer.echo(f"{'pair_id':<34} {'residual_m':>12}  status")
    for record in calibration.pair_diagnostics():
        if record["residual_meters"] is None:
            typer.echo(f"{record['pair_id']:<34} {'-':>12}  inactive")
            continue
        status = "inlier" if record["is_inlier"] else "outlier"
        typer.echo(f"{record['pair_id']:<34} {record['residual_meters']:>12.3f}  {status}")

    if output is not None:
        save_model(str(output), result.model, calibration.origin, calibration.rmse)
        typer.echo(f"\nModel written to {output}")
