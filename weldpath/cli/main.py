from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from ..config import PRESETS, PipelineConfig, load_config, save_config
from ..core.errors import WeldPathError
from ..examples.synthetic import SHAPES, generate_points
from ..pipeline import ProgressEvent
from ..runtime.builders import ENGINE_CHOICES
from ..sdk.run import run_pipeline

app = typer.Typer(help="weldpath: point cloud to weld path and robot trajectory")
config_app = typer.Typer(help="Pipeline configuration files")
points_app = typer.Typer(help="Synthetic point cloud helpers")
app.add_typer(config_app, name="config")
app.add_typer(points_app, name="points")


def _configure_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format="[%(levelname)s] %(message)s")
    logging.getLogger("weldpath").setLevel(numeric)


def _echo_progress(event: ProgressEvent) -> None:
    typer.echo(f"[{event.state.value}] {event.progress:4.0%} {event.message}")


@app.command("run")
def run(
    input_path: Path = typer.Argument(..., exists=True, readable=True, help="Point cloud file (.ply, .pcd, .xyz)."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", exists=True, readable=True, help="YAML pipeline configuration."),
    preset: Optional[str] = typer.Option(None, "--preset", help="Configuration preset (default, high_quality, fast_preview)."),
    engine: str = typer.Option("auto", "--engine", help="Geometry engine (auto, reference, open3d)."),
    output_dir: Path = typer.Option(Path("weldpath_output"), "--output-dir", "-o", help="Directory for mesh, path, trajectory and programs."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Do not print progress events."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (e.g. INFO, DEBUG)."),
) -> None:
    """Run the full pipeline on a point cloud file."""

    if config is not None and preset is not None:
        raise typer.BadParameter("Use either --config or --preset, not both.", param_hint="--preset")
    if engine.lower() not in ENGINE_CHOICES:
        raise typer.BadParameter(f"engine must be one of {list(ENGINE_CHOICES)}.", param_hint="--engine")
    _configure_logging(log_level)

    try:
        if config is not None:
            cfg = load_config(config)
        else:
            cfg = PipelineConfig.preset(preset or "default")
        summary = run_pipeline(
            input_path.resolve(),
            cfg,
            engine=engine,
            output_dir=output_dir,
            listener=None if quiet else _echo_progress,
        )
    except WeldPathError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(
        f"Completed {summary.waypoint_count} waypoints "
        f"({summary.reachable_count} reachable) on a mesh of {summary.triangle_count} triangles "
        f"with engine '{summary.engine}'; outputs in {output_dir.resolve()}"
    )


@config_app.command("init")
def config_init(
    path: Path = typer.Argument(..., help="Where to write the YAML configuration."),
    preset: str = typer.Option("default", "--preset", help="Preset to start from."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write a configuration file from a preset."""

    if preset not in PRESETS:
        raise typer.BadParameter(f"preset must be one of {sorted(PRESETS)}.", param_hint="--preset")
    if path.exists() and not force:
        raise typer.BadParameter(f"{path} exists; pass --force to overwrite.", param_hint="PATH")
    out = save_config(PipelineConfig.preset(preset), path.resolve())
    typer.echo(f"Wrote {preset} configuration to {out}")


@config_app.command("show")
def config_show(
    path: Path = typer.Argument(..., exists=True, readable=True, help="YAML configuration to validate and print."),
) -> None:
    """Validate a configuration file and print the resolved values."""

    try:
        cfg = load_config(path)
    except WeldPathError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    for key, value in cfg.to_record().items():
        typer.echo(f"{key}: {value}")


@points_app.command("generate")
def points_generate(
    output: Path = typer.Argument(..., help="Output point cloud path (.ply)."),
    shape: str = typer.Option(
        "hemisphere", "--shape", help="Synthetic shape (hemisphere, cylinder, torus, vessel_segment, weld_seam)."
    ),
    count: int = typer.Option(1000, "--count", "-n", help="Number of points."),
    noise: float = typer.Option(0.0, "--noise", help="Uniform position noise half-width (metres)."),
    seed: int = typer.Option(0, "--seed", help="Random seed."),
) -> None:
    """Generate a synthetic point cloud for demos and tests."""

    if shape.lower() not in SHAPES:
        raise typer.BadParameter(f"shape must be one of {sorted(SHAPES)}.", param_hint="--shape")
    if count < 4:
        raise typer.BadParameter("count must be at least 4.", param_hint="--count")
    if output.suffix.lower() != ".ply":
        raise typer.BadParameter("Output must end with .ply", param_hint="OUTPUT")
    out = output.resolve()
    generate_points(shape, count, out, noise=noise, seed=seed)
    typer.echo(f"Wrote {count} {shape} points to {out}")


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
