"""Tests for font availability checks."""

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from harvester.processing.cli_invoker import RendererCli, ToolResult
from harvester.processing.fonts import (
    FontChecker,
    FontProbeError,
    filter_missing_fonts,
    get_installed_font_names,
)


def test_empty_string_font_never_missing():
    missing = filter_missing_fonts(["Arial", ""], {"arial"})

    assert missing == []


def test_missing_fonts_compared_case_insensitively():
    missing = filter_missing_fonts(["ARIAL", "Andika New Basic"], {"arial"})

    assert missing == ["Andika New Basic"]


def test_duplicate_font_names_reported_once():
    assert filter_missing_fonts(["Andika", "Andika"], set()) == ["Andika"]


def test_installed_font_names_parses_fc_list():
    output = "DejaVu Sans,DejaVu Sans Condensed\nNoto Serif\n\n"
    completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=output)

    with patch("harvester.processing.fonts.run_command", return_value=completed):
        names = get_installed_font_names()

    assert names == {"dejavu sans", "dejavu sans condensed", "noto serif"}


def test_installed_font_names_fc_list_failure():
    completed = subprocess.CompletedProcess(args=[], returncode=1, stdout="boom")

    with patch("harvester.processing.fonts.run_command", return_value=completed):
        with pytest.raises(FontProbeError):
            get_installed_font_names()


def fake_renderer(fonts, exit_code=0, exited_normally=True):
    """Renderer stub that writes a font report with the given font names."""
    renderer = MagicMock()

    def run_tool(args, timeout):
        report_path = Path(args[args.index("--report-path") + 1])
        if exited_normally and exit_code == 0:
            report_path.write_text("\n".join(fonts), encoding="utf-8")
        return ToolResult(exited_normally, exit_code, "", "")

    renderer.run_tool.side_effect = run_tool
    return renderer


def test_get_missing_fonts_from_report(tmp_path):
    checker = FontChecker(fake_renderer(["Arial", "", "Andika"]), installed_fonts=lambda: {"arial"})

    missing, ok = checker.get_missing_fonts(tmp_path)

    assert ok is True
    assert missing == ["Andika"]
    args, timeout = checker.renderer.run_tool.call_args[0]
    assert args[:3] == ["font-report", "--item-path", str(tmp_path)]
    assert timeout == 20


def test_get_missing_fonts_renderer_failure(tmp_path):
    checker = FontChecker(fake_renderer([], exit_code=1), installed_fonts=lambda: set())

    missing, ok = checker.get_missing_fonts(tmp_path)

    assert ok is False
    assert missing == []


def test_get_missing_fonts_timeout(tmp_path):
    checker = FontChecker(fake_renderer([], exited_normally=False), installed_fonts=lambda: set())

    assert checker.get_missing_fonts(tmp_path) == ([], False)


def test_get_missing_fonts_renderer_not_installed(tmp_path):
    checker = FontChecker(RendererCli("/nonexistent/renderer"), installed_fonts=lambda: set())

    assert checker.get_missing_fonts(tmp_path) == ([], False)


def test_get_missing_fonts_probe_failure(tmp_path):
    def broken_probe():
        raise FontProbeError("no fc-list")

    checker = FontChecker(fake_renderer(["Arial"]), installed_fonts=broken_probe)

    assert checker.get_missing_fonts(tmp_path) == ([], False)


def test_mark_reported_only_once():
    checker = FontChecker(MagicMock(), installed_fonts=lambda: set())

    assert checker.mark_reported("Andika") is True
    assert checker.mark_reported("Andika") is False
    assert checker.mark_reported("Charis") is True
