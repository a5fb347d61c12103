#!/usr/bin/env python3
"""
Unit tests for the configuration and the command-line interface.

Tests:
- YAML round trip including the nested phase configurations
- Unknown keys and inconsistent options are rejected
- config init/show/validate commands
- status show command on a status directory

Run with:
    python tests/test_config_cli.py
"""

import math
import os
import sys
import tempfile

# Add src to PYTHONPATH
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from typer.testing import CliRunner

from algotune.cli import app
from algotune.config import (
    UNBOUNDED,
    CmaEsStrategyConfiguration,
    ContinuousOptimizationMethod,
    DifferentialEvolutionStrategyConfiguration,
    TunerConfiguration,
)
from algotune.errors import ConfigurationError
from algotune.genomes import Genome, Population
from algotune.optimization.differential_evolution import DifferentialEvolutionConfiguration
from algotune.tuner import TunerStatus

runner = CliRunner()


def test_defaults():
    """Test a few defaults of the configuration."""
    config = TunerConfiguration()

    assert config.population_size == 128
    assert config.max_gga_generations == UNBOUNDED
    assert config.continuous_optimization_method == ContinuousOptimizationMethod.NONE
    assert math.isinf(config.cpu_timeout)
    assert config.cma_es.minimum_domain_size == 150
    assert not config.requires_genetic_engineering

    print("PASS: Configuration defaults")


def test_yaml_round_trip():
    """Test that every option survives YAML, nested ones included."""
    config = TunerConfiguration(
        population_size=32,
        continuous_optimization_method="JADE",
        cma_es=CmaEsStrategyConfiguration(focus_on_incumbent=True, replacement_rate=0.25),
        differential_evolution=DifferentialEvolutionStrategyConfiguration(
            maximum_number_generations=7,
            differential_evolution=DifferentialEvolutionConfiguration(best_percentage=0.2),
        ),
        random_seed=9,
    )
    assert config.continuous_optimization_method == ContinuousOptimizationMethod.JADE

    restored = TunerConfiguration.from_yaml(config.to_yaml())
    assert restored == config
    assert restored.differential_evolution.differential_evolution.best_percentage == 0.2

    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "nested", "tuning.yaml")
        config.save_yaml(path)
        assert TunerConfiguration.load_yaml(path) == config

    assert TunerConfiguration.from_yaml("") == TunerConfiguration()

    print("PASS: YAML round trip")


def test_invalid_configurations():
    """Test that unknown keys and inconsistent options raise ConfigurationError."""
    invalid = [
        lambda: TunerConfiguration.from_dict({"population_size": 16, "popsize": 16}),
        lambda: TunerConfiguration(population_size=1),
        lambda: TunerConfiguration(tournament_winner_percentage=0.0),
        lambda: TunerConfiguration(start_number_instances=10, end_number_instances=5),
        lambda: TunerConfiguration(continuous_optimization_method="SIMPLEX"),
        lambda: CmaEsStrategyConfiguration(initial_step_size=0.0),
        lambda: DifferentialEvolutionStrategyConfiguration(replacement_rate=0.6),
    ]
    for create in invalid:
        try:
            create()
            assert False, "Inconsistent configuration was accepted"
        except ConfigurationError:
            pass

    assert TunerConfiguration(enable_sexual_selection=True).requires_genetic_engineering

    print("PASS: Invalid configurations are rejected")


def test_cli_config_commands():
    """Test config init, show and validate."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = os.path.join(tmpdir, "tuning.yaml")

        result = runner.invoke(app, ["config", "init", path, "--seed", "3"])
        assert result.exit_code == 0, result.output
        assert TunerConfiguration.load_yaml(path).random_seed == 3

        result = runner.invoke(app, ["config", "init", path])
        assert result.exit_code == 1, "Existing files are not overwritten without --force"

        result = runner.invoke(app, ["config", "show", path])
        assert result.exit_code == 0, result.output
        assert "population_size" in result.output

        result = runner.invoke(app, ["config", "validate", path])
        assert result.exit_code == 0, result.output
        assert "valid" in result.output

        broken = os.path.join(tmpdir, "broken.yaml")
        with open(broken, "w") as f:
            f.write("population_size: 1\n")
        result = runner.invoke(app, ["config", "validate", broken])
        assert result.exit_code == 1

        result = runner.invoke(app, ["config", "show", os.path.join(tmpdir, "missing.yaml")])
        assert result.exit_code == 1

    print("PASS: Config commands work")


def test_cli_status_show():
    """Test the status summary of a status directory."""
    config = TunerConfiguration(population_size=8)
    population = Population(config, competitive=[Genome({"x": 1}, age=1)], non_competitive=[Genome({"x": 2})])

    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(app, ["status", "show", tmpdir])
        assert result.exit_code == 0
        assert "No status files found" in result.output

        TunerStatus(2, 0, [0], population, None).save(os.path.join(tmpdir, TunerStatus.FILE_NAME))
        result = runner.invoke(app, ["status", "show", tmpdir])
        assert result.exit_code == 0, result.output
        assert "Next generation" in result.output
        assert "1 competitive / 1 non-competitive" in result.output

        result = runner.invoke(app, ["status", "show", os.path.join(tmpdir, TunerStatus.FILE_NAME)])
        assert result.exit_code == 1, "A file is not a status directory"

    print("PASS: Status command summarizes status files")


def run_all_tests():
    """Run all configuration and CLI tests."""
    print("\n" + "=" * 60)
    print("  Configuration and CLI Unit Tests")
    print("=" * 60 + "\n")

    tests = [
        test_defaults,
        test_yaml_round_trip,
        test_invalid_configurations,
        test_cli_config_commands,
        test_cli_status_show,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            print(f"\nRunning: {test.__name__}")
            test()
            passed += 1
        except Exception as e:
            print(f"FAIL: {test.__name__}")
            print(f"  Error: {e}")
            import traceback
            traceback.print_exc()
            failed += 1

    print("\n" + "=" * 60)
    print(f"  Results: {passed} passed, {failed} failed")
    print("=" * 60 + "\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
