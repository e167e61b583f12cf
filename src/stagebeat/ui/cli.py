"""
Command-Line Interface for StageBeat.

Provides commands for running a show against a metronome beat source,
inspecting effect libraries, validating show files and testing DMX output.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import click
import structlog

from stagebeat import __version__
from stagebeat.core.exceptions import StageBeatError

logger = structlog.get_logger()


def _load_settings(ctx: click.Context):
    from stagebeat.core.config import Settings

    if ctx.obj["config_path"]:
        settings = Settings.from_yaml(ctx.obj["config_path"])
    else:
        settings = Settings()
    settings.debug = ctx.obj["debug"]
    return settings


@click.group()
@click.version_option(version=__version__)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    type=click.Path(exists=True),
    help="Path to configuration file",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config: Optional[str]) -> None:
    """
    StageBeat - beat-synchronized lighting show control

    Runs cue timelines and parametric effects in lockstep with a musical
    beat clock, routing the result to light and DMX controllers.
    """
    ctx.ensure_object(dict)

    log_level = "DEBUG" if debug else "INFO"
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level)
        ),
    )

    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config) if config else None


@cli.command()
@click.option("--mock", is_flag=True, help="Use mock output controllers (no hardware)")
@click.option("--show", "show_name", help="Show to load and start")
@click.option("--bpm", type=float, default=None, help="Metronome tempo (defaults to the show's bpm)")
@click.option("--duration", "-d", type=float, default=None, help="Stop after this many seconds")
@click.option("--fps", default=100.0, help="Subdivision polling rate")
@click.pass_context
def run(
    ctx: click.Context,
    mock: bool,
    show_name: Optional[str],
    bpm: Optional[float],
    duration: Optional[float],
    fps: float,
) -> None:
    """Run the engine driven by a metronome beat source."""
    from stagebeat.controllers.mock import MockBeatSource
    from stagebeat.engine import build_show_engine

    settings = _load_settings(ctx)

    click.echo(f"StageBeat v{__version__}")
    click.echo("=" * 50)

    try:
        engine = build_show_engine(settings, mock_outputs=mock)

        tempo = bpm or settings.clock.default_bpm
        if show_name:
            show = engine.load_show(show_name)
            tempo = bpm or show.bpm or tempo
            engine.start_show()
            click.echo(f"Show: {show.name} ({len(show.cues)} cues)")

        click.echo(f"Mode: {'Mock' if mock else 'Live'}")
        click.echo(f"Effects: {len(engine.catalog)}")
        click.echo(f"Tempo: {tempo:.1f} BPM")
        click.echo("Press Ctrl+C to stop.")
        click.echo()

        # The metronome tempo is known, so subdivide at it from the first beat
        engine.set_bpm(tempo)
        source = MockBeatSource(engine.clock, bpm=tempo, beats_per_bar=settings.clock.beats_per_bar)
        engine.run_loop(beat_source=source, target_fps=fps, duration_s=duration)

        stats = engine.get_stats()
        click.echo(
            f"Ticks: {stats['ticks']}, cues fired: {stats['scheduler']['fired']}, "
            f"tempo: {engine.clock.bpm:.1f} BPM"
        )

    except KeyboardInterrupt:
        click.echo("\nShutting down...")
    except StageBeatError as e:
        click.echo(f"Error: {e.message}", err=True)
        if ctx.obj["debug"]:
            raise
        sys.exit(1)


@cli.command("list-effects")
@click.option("--tag", help="Only effects with this tag")
@click.pass_context
def list_effects(ctx: click.Context, tag: Optional[str]) -> None:
    """List effects in the configured effects directory."""
    from stagebeat.engine.catalog import EffectCatalog
    from stagebeat.loaders import load_effects_dir

    settings = _load_settings(ctx)
    catalog = EffectCatalog(load_effects_dir(settings.library.effects_dir))
    effects = catalog.find_by_tag(tag) if tag else catalog.list_effects()

    click.echo(f"Effects in {settings.library.effects_dir}:")
    click.echo("-" * 60)
    for effect in effects:
        tags = ", ".join(effect.tags) or "-"
        click.echo(f"  {effect.id:24s} {len(effect.steps):3d} steps  [{tags}]")

    if not effects:
        click.echo("  (no effects found)")


@cli.command("validate-show")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def validate_show(ctx: click.Context, path: str) -> None:
    """Parse a show file and print its cue list."""
    from stagebeat.loaders import load_show_file

    try:
        show = load_show_file(path)
    except StageBeatError as e:
        click.echo(f"Invalid: {e.message}", err=True)
        sys.exit(1)

    click.echo(f"Show: {show.name} ({len(show.cues)} cues)")
    for cue in show.cues:
        position = cue.position
        if position.is_absolute:
            where = f"{position.time:.0f}ms"
        else:
            where = "{}.{}.{}".format(*position.musical)
        actions = ", ".join(f"{a.type}:{','.join(a.target_ids()) or '*'}" for a in cue.actions)
        click.echo(f"  {where:>10s}  {cue.label}  {actions}")


@cli.command()
@click.option("--channel", "-c", type=int, required=True, help="DMX channel (1-512)")
@click.option("--value", "-v", type=int, required=True, help="Value (0-255)")
@click.option("--universe", "-u", type=int, default=0, help="Universe")
@click.pass_context
def dmx_test(ctx: click.Context, channel: int, value: int, universe: int) -> None:
    """Test DMX output by setting a single channel."""
    import time

    from stagebeat.core.state import DMXFrame
    from stagebeat.engine.builder import create_controllers

    if not 1 <= channel <= 512:
        click.echo("Error: Channel must be 1-512", err=True)
        sys.exit(1)

    if not 0 <= value <= 255:
        click.echo("Error: Value must be 0-255", err=True)
        sys.exit(1)

    settings = _load_settings(ctx)
    _, controllers = create_controllers(settings)
    if not controllers:
        click.echo("Error: no DMX provider configured", err=True)
        sys.exit(1)

    click.echo(f"Setting universe {universe} channel {channel} to {value}...")

    try:
        for controller in controllers:
            controller.connect()
            controller.send_frame(DMXFrame(universe=universe, channels={channel: value}))
        click.echo("Press Ctrl+C to stop and blackout.")

        while True:
            time.sleep(1)

    except KeyboardInterrupt:
        click.echo("\nBlacking out...")
    finally:
        for controller in controllers:
            controller.blackout()
            controller.disconnect()


def main() -> None:
    """Entry point for the CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
