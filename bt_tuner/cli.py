"""
Command line entry point.

    bt-tuner simulate --ticks 7200 --optimize genetic
    bt-tuner serve --preset realtime --port 8000
"""
from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from .config import ALGORITHMS, OBJECTIVES, ConfigManager, TunerConfig, list_presets
from .logging_config import configure_logging
from .metrics import get_metrics
from .simulation import DuelSimulation
from .version import __version__, check_python_version

logger = logging.getLogger(__name__)


def load_config(args) -> TunerConfig:
    """Config file if given, otherwise the named preset; ``--seed`` overrides the optimizer seed."""
    config: Optional[TunerConfig] = None
    if args.config:
        config = TunerConfig.load(args.config)
        if config is None:
            raise SystemExit(f"Could not load config file: {args.config}")
    else:
        config = ConfigManager(args.config_dir).get(args.preset)
        if config is None:
            raise SystemExit(f"Unknown preset: {args.preset} (available: {', '.join(list_presets())})")

    if args.seed is not None:
        config.optimizer.prng_seed = args.seed
    return config


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="bt-tuner",
        description="Behavior tree telemetry, analysis and parameter tuning",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # Shared configuration
    ap.add_argument("--config", help="Path to a JSON or YAML config file")
    ap.add_argument("--preset", default="default", help="Built-in preset or name in --config-dir")
    ap.add_argument("--config-dir", default="./tuner_configs", help="Directory of named configs")
    ap.add_argument("--seed", type=int, default=None, help="Seed for the simulation and optimizer")
    ap.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING or ERROR")
    ap.add_argument("--log-dir", default=None, help="Also write rotating log files here")

    sub = ap.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", help="Run the arena duel and print reports")
    sim.add_argument("--ticks", type=int, default=3600, help="Ticks to simulate (60 per second)")
    sim.add_argument("--optimize", choices=ALGORITHMS, default=None,
                     help="Start an optimization run with this algorithm")
    sim.add_argument("--objective", choices=OBJECTIVES, default=None, help="Optimization objective")
    sim.add_argument("--warmup", type=int, default=600, help="Ticks before the optimization starts")
    sim.add_argument("--metrics-out", default=None, help="Write a metrics JSON export here")

    serve = sub.add_parser("serve", help="Warm up the duel, then serve its state over HTTP")
    serve.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve.add_argument("--warmup", type=int, default=3600, help="Ticks simulated before serving")

    return ap


def run_simulate(args, config: TunerConfig) -> int:
    sim = DuelSimulation(config, seed=args.seed)
    sim.start()

    if args.optimize:
        sim.run(args.warmup)
        sim.engine.start_optimization(sim.tree_id, objective=args.objective, algorithm=args.optimize)
        remaining = args.ticks - args.warmup
    else:
        remaining = args.ticks
    summary = sim.run(remaining)

    sim.analyzer.run_cycle()

    print(f"\nSimulated {summary['ticks']} ticks ({summary['time']:.1f}s)")
    print(f"Results: {summary['results']}")
    print(f"Episodes: {summary['episodes']}")
    print(f"World: {summary['world']}\n")
    print(sim.tree.tree_telemetry.summary_report())
    print()
    print(sim.monitor.generate_report())
    print()
    if sim.analyzer.report is not None:
        print(sim.analyzer.report.to_text())
        print()
    print(sim.engine.generate_report())

    if args.metrics_out:
        get_metrics().export_json(args.metrics_out)
        print(f"\nMetrics written to {args.metrics_out}")
    return 0


def run_serve(args, config: TunerConfig) -> int:
    import uvicorn

    from .api import create_app

    sim = DuelSimulation(config, seed=args.seed)
    sim.run(args.warmup)
    sim.analyzer.run_cycle()

    app = create_app(
        monitor=sim.monitor,
        analyzer=sim.analyzer,
        engine=sim.engine,
        aggregator=sim.telemetry,
    )
    print(f"\nbt-tuner API on http://{args.host}:{args.port}")
    print(f"API docs: http://{args.host}:{args.port}/docs\n")
    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    ok, message = check_python_version()
    if not ok:
        print(message, file=sys.stderr)
        return 1

    args = build_parser().parse_args(argv)
    configure_logging(level=args.log_level, log_dir=args.log_dir)
    config = load_config(args)
    logger.info(f"Using config {config.name!r}")

    if args.command == "simulate":
        return run_simulate(args, config)
    return run_serve(args, config)


if __name__ == "__main__":
    sys.exit(main())
