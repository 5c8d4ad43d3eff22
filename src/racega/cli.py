"""Command-line entry point for genetic-PPO training runs.

Usage:
    racega-train --config configs/genetic_ppo.yaml
    racega-train --config configs/genetic_ppo.yaml --generations 20 --population-size 12
    racega-train --policy pursuit --max-ticks 20000 --no-console

Every flag overrides the matching key of the YAML file and is validated
against the same declared range.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from racega.errors import ConfigurationError
from racega.runner.train_runner import TrainingRunner
from racega.utils.config import load_config
from racega.utils.logger import build_logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="racega-train",
        description="Genetic-PPO racing trainer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=str, default=None, help="Path to the training YAML file")
    parser.add_argument("--generations", type=int, default=None, help="Number of generations to train")
    parser.add_argument("--population-size", type=int, default=None, help="Genomes per generation")
    parser.add_argument("--elite-count", type=int, default=None, help="Genomes carried over unchanged")
    parser.add_argument(
        "--episodes-per-generation",
        type=int,
        default=None,
        help="Episodes each genome runs before evolution",
    )
    parser.add_argument("--mutation-rate", type=float, default=None, help="Per-field mutation probability")
    parser.add_argument("--mutation-magnitude", type=float, default=None, help="Mutation perturbation scale")
    parser.add_argument("--crossover-rate", type=float, default=None, help="Probability of crossover")
    parser.add_argument("--max-agents", type=int, default=None, help="Maximum simultaneous agents")
    parser.add_argument("--policy", type=str, default=None, help="Policy optimizer (ppo or pursuit)")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--output-dir", type=str, default=None, help="Directory for records and models")
    parser.add_argument("--max-ticks", type=int, default=None, help="Stop after this many simulation ticks")
    parser.add_argument("--no-console", action="store_true", help="Disable console output")
    parser.add_argument("--wandb", action="store_true", help="Enable Weights & Biases logging")
    parser.add_argument("--verbose", action="store_true", help="Show debug diagnostics")
    return parser


def collect_overrides(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    """Map parsed flags onto ``{section: {key: value}}`` config overrides."""

    mapping = {
        "generations": ("genetic", "max_generations"),
        "population_size": ("genetic", "population_size"),
        "elite_count": ("genetic", "elite_count"),
        "episodes_per_generation": ("genetic", "episodes_per_generation"),
        "mutation_rate": ("genetic", "mutation_rate"),
        "mutation_magnitude": ("genetic", "mutation_magnitude"),
        "crossover_rate": ("genetic", "crossover_rate"),
        "seed": ("genetic", "seed"),
        "max_agents": ("coordinator", "max_simultaneous_agents"),
        "policy": ("policy", "name"),
        "output_dir": ("logging", "output_dir"),
    }
    overrides: Dict[str, Dict[str, Any]] = {}
    for attr, (section, key) in mapping.items():
        value = getattr(args, attr, None)
        if value is not None:
            overrides.setdefault(section, {})[key] = value
    if args.no_console:
        overrides.setdefault("logging", {})["console"] = False
    if args.wandb:
        overrides.setdefault("logging", {})["wandb"] = True
    return overrides


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        cfg, cfg_path = load_config(args.config)
        cfg.apply_overrides(collect_overrides(args))
        run_logger = build_logger(cfg.logging, config_dict=cfg.to_dict())
        runner = TrainingRunner(cfg, run_logger=run_logger, config_root=cfg_path.parent)
    except ConfigurationError as exc:
        print(f"racega-train: configuration error: {exc}", file=sys.stderr)
        return 2

    summary = runner.run(max_ticks=args.max_ticks)
    print(
        f"Completed {summary['generations_completed']} generation(s), "
        f"{summary['total_laps']} lap(s); records in {Path(runner.output_dir)}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
