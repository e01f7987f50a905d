"""
Inversion Simulator - deterministic lattice billiard with scheduled inversions.

Main entry point for single runs.
"""

from __future__ import annotations
import argparse
import logging
from dataclasses import replace
from pathlib import Path
from typing import Optional, Tuple, Union

from inversion_sim.config import (
    ConfigError,
    CornerMode,
    EventOptions,
    ReflectMode,
    RunConfig,
    canonical_config,
    four_stage_schedule,
)
from inversion_sim.core import RunEngine, RunResult, available_variants, get_variant
from inversion_sim.core.schedule import compute_inversion_step_from_start
from inversion_sim.storage import RunOutputWriter


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def inversion_step_arg(value: str) -> Union[int, str]:
    """argparse type for --inversion-step: an integer or 'auto'."""
    if value == 'auto':
        return value
    try:
        step = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer or 'auto', got {value!r}") from None
    return step


def log_summary(result: RunResult, run_dir: Optional[Path] = None) -> None:
    """Log the headline numbers of a run."""
    cfg = result.config
    inversion_step = cfg.inversion_step
    if inversion_step is None:
        inversion_step = compute_inversion_step_from_start(cfg)

    logger.info(f"Variant: {result.variant_name}")
    logger.info(f"Steps: {cfg.steps}")
    logger.info(f"InversionStep: {inversion_step}")
    if cfg.has_schedule:
        logger.info("Schedule: " + ", ".join(f"{m.kind.value}@{m.step}" for m in cfg.inversion_schedule))
    logger.info(f"Grid: {cfg.size_x}x{cfg.size_y}")
    logger.info(f"Start: x0={cfg.x0}, y0={cfg.y0}")
    logger.info(f"Velocity: vx0={cfg.vx0}, vy0={cfg.vy0}")
    logger.info(f"Multiplier: {cfg.multiplier}")
    logger.info(f"Mod: {cfg.mod}")
    logger.info(f"Events: {len(result.events)}")
    for event_type, count in sorted(result.stats.events_by_type.items()):
        logger.info(f"  {event_type}: {count}")
    logger.info(f"Speed: {result.stats.steps_per_second:.0f} steps/s")
    if run_dir is not None:
        logger.info(f"Saved to: {run_dir}")


def run_simulation(
    config: RunConfig,
    variant: str = "clamp",
    output_dir: Optional[Path] = None,
    save: bool = True,
) -> Tuple[RunResult, Optional[Path]]:
    """
    Run a single simulation and optionally save its outputs.

    Args:
        config: Run configuration
        variant: Variant alias or full name
        output_dir: Base directory for run_counter.txt and runs/
        save: Write the run directory

    Returns:
        (run result, run directory or None)
    """
    engine = RunEngine(get_variant(variant))
    logger.info(f"Running {engine.variant.name} for {config.steps} steps...")
    result = engine.run(config)

    run_dir = None
    if save:
        writer = RunOutputWriter(output_dir if output_dir is not None else Path("."))
        run_dir = writer.write(result)

    log_summary(result, run_dir)
    return result, run_dir


def build_config(args: argparse.Namespace) -> RunConfig:
    """RunConfig from parsed CLI arguments."""
    if args.config is not None:
        config = RunConfig.load(args.config)
    elif args.canonical:
        config = canonical_config()
    else:
        config = RunConfig(
            size_x=args.size_x,
            size_y=args.size_y,
            x0=args.x0,
            y0=args.y0,
            vx0=args.vx0,
            vy0=args.vy0,
            phase0=args.phase0,
            steps=args.steps,
            multiplier=args.multiplier,
            mod=args.mod,
            reflect_mode=ReflectMode(args.reflect_mode),
            events=EventOptions(
                corner_mode=CornerMode(args.corner_mode),
                emit_edge_events=args.edge_events,
                emit_near_corner_events=args.near_corner_events,
                near_corner_dist=args.near_corner_dist,
            ),
        )

    if args.schedule == 'four-stage':
        config = replace(config, inversion_schedule=four_stage_schedule(config.steps))
    elif args.schedule == 'none':
        config = replace(config, inversion_schedule=None)

    if args.inversion_step == 'auto':
        config = config.with_derived_inversion_step()
    elif args.inversion_step is not None:
        config = replace(config, inversion_step=args.inversion_step)

    return config


def main():
    """Command-line interface for running simulations."""
    parser = argparse.ArgumentParser(description="Inversion Simulator")

    parser.add_argument('--variant', type=str, default='clamp',
                       help=f"Variant alias (clamp, mirror, sticky, inversion) or one of {available_variants()}")
    parser.add_argument('--config', type=str, default=None,
                       help='Load the run configuration from a JSON file')
    parser.add_argument('--canonical', action='store_true',
                       help='Use the canonical 5x7 four-stage run')
    parser.add_argument('--size-x', type=int, default=5,
                       help='Grid width (default: 5)')
    parser.add_argument('--size-y', type=int, default=7,
                       help='Grid height (default: 7)')
    parser.add_argument('--x0', type=int, default=1,
                       help='Start x (default: 1)')
    parser.add_argument('--y0', type=int, default=1,
                       help='Start y (default: 1)')
    parser.add_argument('--vx0', type=int, default=1,
                       help='Start vx (default: 1)')
    parser.add_argument('--vy0', type=int, default=1,
                       help='Start vy (default: 1)')
    parser.add_argument('--phase0', type=int, default=0,
                       help='Start phase (default: 0)')
    parser.add_argument('--steps', type=int, default=1000,
                       help='Number of ticks (default: 1000)')
    parser.add_argument('--multiplier', type=float, default=7,
                       help='Off-diagonal corner multiplier (default: 7)')
    parser.add_argument('--mod', type=int, default=1000003,
                       help='Phase modulus (default: 1000003)')
    parser.add_argument('--inversion-step', type=inversion_step_arg, default=None,
                       help="Legacy inversion step, or 'auto' to derive it from the start hash")
    parser.add_argument('--schedule', choices=['keep', 'none', 'four-stage'], default='keep',
                       help='Multi-stage inversion schedule (default: keep the loaded one)')
    parser.add_argument('--reflect-mode', choices=[m.value for m in ReflectMode], default='clamp',
                       help='Boundary handling (default: clamp)')
    parser.add_argument('--corner-mode', choices=[m.value for m in CornerMode], default='mainDiag',
                       help='Diagonal corner classification (default: mainDiag)')
    parser.add_argument('--edge-events', action='store_true',
                       help='Emit edge-hit events')
    parser.add_argument('--near-corner-events', action='store_true',
                       help='Emit near-corner enter/exit events')
    parser.add_argument('--near-corner-dist', type=int, default=1,
                       help='Manhattan distance for near-corner events (default: 1)')
    parser.add_argument('--output', type=str, default='.',
                       help='Directory holding run_counter.txt and runs/ (default: .)')
    parser.add_argument('--no-save', action='store_true',
                       help='Do not write a run directory')

    args = parser.parse_args()

    try:
        config = build_config(args).check()
    except ConfigError as e:
        parser.error(str(e))

    run_simulation(
        config=config,
        variant=args.variant,
        output_dir=Path(args.output),
        save=not args.no_save,
    )

    logger.info("Done!")


if __name__ == "__main__":
    main()
