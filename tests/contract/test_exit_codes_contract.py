from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from cardgen.cli import main as cli_main
from cardgen.cli.__main__ import EXIT_FATAL, EXIT_JOB_FAILED, EXIT_SUCCESS
from cardgen.errors import RenderError
from cardgen.logging.init import reset_logging

"""Exit code contract: 0 success, 1 fatal before any job, 2 job failed."""


def test_exit_code_values():
    assert (EXIT_SUCCESS, EXIT_FATAL, EXIT_JOB_FAILED) == (0, 1, 2)


def test_exit_code_fatal_startup(temp_workdir: Path, capsys):
    reset_logging()
    code = cli_main(["--config", "config/missing.yml", "generate", "data/x.xlsx"])
    assert code == 1
    assert "ERROR config:" in capsys.readouterr().out


def test_exit_code_success(temp_workdir: Path, write_config, sample_xlsx: bytes, capsys):
    reset_logging()
    (temp_workdir / "data" / "ofertas.xlsx").write_bytes(sample_xlsx)
    assert cli_main(["generate", "data/ofertas.xlsx"]) == 0


def test_exit_code_rejected_input(temp_workdir: Path, write_config, capsys):
    reset_logging()
    (temp_workdir / "data" / "ofertas.xlsx").write_bytes(b"not a workbook")
    assert cli_main(["generate", "data/ofertas.xlsx"]) == 1


def test_exit_code_job_failed(temp_workdir: Path, write_config, sample_xlsx: bytes, capsys):
    reset_logging()
    (temp_workdir / "data" / "ofertas.xlsx").write_bytes(sample_xlsx)
    with patch("cardgen.render.card.CardRenderer.render", side_effect=RenderError("boom", row_index=2)):
        assert cli_main(["generate", "data/ofertas.xlsx"]) == 2
