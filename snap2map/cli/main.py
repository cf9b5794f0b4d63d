"""Main Typer CLI application for snap2map."""

import logging

import typer

app = typer.Typer(
    help="Calibrate a photographed map against GPS coordinates and project positions",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _register_commands() -> None:
    """
    Import command modules to register commands with the app.

    Commands use the @app.command() decorator, which registers them when the
    module is imported.
    """
    from snap2map.cli import fit, project

    _ = fit
    _ = project


_register_commands()


if __name__ == "__main__":
    app()
