"""
Tests for the single-run command line.
"""

import argparse
import sys
import pytest

from inversion_sim.main import inversion_step_arg, main


class TestCommandLine:
    """Tests for argument handling of inversion-sim."""

    def test_inversion_step_values(self):
        """Integers and 'auto' are accepted."""
        assert inversion_step_arg("12") == 12
        assert inversion_step_arg("auto") == "auto"

    def test_inversion_step_rejects_text(self):
        """Anything else is an argument error."""
        with pytest.raises(argparse.ArgumentTypeError):
            inversion_step_arg("soon")

    def test_bad_inversion_step_exits_with_usage(self, monkeypatch, capsys):
        """A malformed --inversion-step is reported by argparse, not as a traceback."""
        monkeypatch.setattr(sys, "argv", ["inversion-sim", "--inversion-step", "soon", "--no-save"])
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 2
        assert "--inversion-step" in capsys.readouterr().err

    def test_bad_config_exits_with_usage(self, monkeypatch, capsys):
        """Configuration errors go through the parser as well."""
        monkeypatch.setattr(sys, "argv", ["inversion-sim", "--size-x", "0", "--no-save"])
        with pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 2

    def test_run_with_inversion_step(self, monkeypatch, tmp_path):
        """A valid command line runs and saves one run directory."""
        monkeypatch.setattr(sys, "argv", ["inversion-sim", "--steps", "20", "--inversion-step", "5",
                                          "--output", str(tmp_path)])
        main()
        assert [p.name for p in (tmp_path / "runs").iterdir()] == ["run_000001"]
