"""
test_main.py
~~~~~~~~~~~~

Tests for the command-line XOR driver.
"""

import pytest
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from scalarnet.__main__ import main, parse_args


@pytest.mark.unit
class TestCommandLine:

    def test_defaults(self):
        args = parse_args([])
        assert args.epochs == 100000
        assert args.hidden_layers == 1
        assert args.learning_rate == 0.5
        assert args.seed is None

    def test_prints_four_predictions(self, capsys):
        assert main(['--epochs', '20', '--seed', '3']) == 0

        lines = capsys.readouterr().out.strip().splitlines()
        assert [line.split(' = ')[0] for line in lines] == [
            '0 XOR 0', '0 XOR 1', '1 XOR 0', '1 XOR 1'
        ]
        assert all(0.0 < float(line.split(' = ')[1]) < 1.0 for line in lines)

    def test_seeded_runs_match(self, capsys):
        main(['--epochs', '10', '--seed', '9'])
        first = capsys.readouterr().out
        main(['--epochs', '10', '--seed', '9'])
        assert capsys.readouterr().out == first

    def test_invalid_arguments(self, capsys):
        assert main(['--epochs', '1', '--hidden-layers', '-1']) == 2
        assert main(['--epochs', '-5']) == 2
        assert capsys.readouterr().out == ''
