"""
Tests for the command line entry point.
"""
import json
import logging

import pytest

from bt_tuner import cli


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    logging.setLoggerClass(logging.Logger)


class TestParser:

    def test_simulate_defaults(self):
        args = cli.build_parser().parse_args(["simulate"])
        assert args.ticks == 3600
        assert args.optimize is None
        assert args.preset == "default"

    def test_rejects_unknown_algorithm(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["simulate", "--optimize", "annealing"])

    def test_serve_describes_warmup_then_snapshot(self):
        parser = cli.build_parser()
        text = parser.format_help()

        assert "Warm up the duel, then serve its state over HTTP" in text
        assert "background" not in text
        assert parser.parse_args(["serve"]).warmup == 3600

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestLoadConfig:

    def test_preset_with_seed(self):
        args = cli.build_parser().parse_args(["--preset", "realtime", "--seed", "9", "simulate"])
        config = cli.load_config(args)

        assert config.name == "realtime"
        assert config.optimizer.prng_seed == 9

    def test_unknown_preset(self, tmp_path):
        args = cli.build_parser().parse_args(["--preset", "nope", "--config-dir", str(tmp_path), "simulate"])
        with pytest.raises(SystemExit):
            cli.load_config(args)

    def test_config_file(self, tmp_path):
        path = tmp_path / "arena.json"
        path.write_text(json.dumps({"name": "arena", "optimizer": {"algorithm": "grid"}}))
        args = cli.build_parser().parse_args(["--config", str(path), "simulate"])

        assert cli.load_config(args).optimizer.algorithm == "grid"


class TestMain:

    def test_simulate(self, capsys):
        code = cli.main(["--preset", "deterministic_test", "--log-level", "WARNING", "simulate", "--ticks", "200"])

        assert code == 0
        out = capsys.readouterr().out
        assert "Simulated 200 ticks" in out
        assert "Episodes: " in out
        assert "=== Optimization Report ===" in out

    def test_simulate_with_optimization(self, capsys, tmp_path):
        metrics_path = tmp_path / "metrics.json"
        code = cli.main([
            "--preset", "deterministic_test", "--seed", "5", "--log-level", "WARNING",
            "simulate", "--ticks", "400", "--warmup", "100", "--optimize", "random",
            "--metrics-out", str(metrics_path),
        ])

        assert code == 0
        assert "latencies" in json.loads(metrics_path.read_text())
