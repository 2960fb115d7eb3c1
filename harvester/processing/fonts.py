"""Font availability checks for downloaded books."""

import logging
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Optional

from .cli_invoker import RendererCli


logger = logging.getLogger(__name__)

GET_FONTS_TIMEOUT_SECS = 20


class FontProbeError(Exception):
    """Raised when the installed fonts cannot be enumerated."""

    pass


def run_command(argv: list[str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        argv,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        check=False,
    )


def get_installed_font_names() -> set[str]:
    """Return the lower-cased family names of every font installed on this host (via fc-list)."""
    try:
        proc = run_command(["fc-list", "--format=%{family}\n"])
    except OSError as e:
        raise FontProbeError(f"fc-list could not be run: {e}") from e
    if proc.returncode != 0:
        raise FontProbeError(f"fc-list failed:\n{proc.stdout}")

    names = set()
    for line in proc.stdout.splitlines():
        # A font can list several family names, comma separated
        for family in line.split(","):
            family = family.strip()
            if family:
                names.add(family.lower())
    return names


def filter_missing_fonts(font_names: Iterable[str], installed: set[str]) -> list[str]:
    """Return the names not present in installed (case-insensitive). Empty names are never missing."""
    missing = []
    for name in font_names:
        if name and name.lower() not in installed and name not in missing:
            missing.append(name)
    return missing


def read_font_report(report_path: Path) -> list[str]:
    """Read a font report: one font name per line."""
    with open(report_path, "r", encoding="utf-8") as f:
        return [line.strip() for line in f.read().splitlines()]


class FontChecker:
    """Finds fonts referenced by a book that are not installed here.

    Also remembers which missing fonts have already been reported, so that an
    issue is filed only once per font for the lifetime of this checker.
    """

    def __init__(self, renderer: RendererCli, installed_fonts: Optional[Callable[[], set[str]]] = None):
        self.renderer = renderer
        self.installed_fonts = installed_fonts or get_installed_font_names
        self.reported_missing: set[str] = set()

    def find_missing(self, font_names: Iterable[str]) -> list[str]:
        """Return which of font_names are not installed.

        Raises:
            FontProbeError: If the installed fonts cannot be determined.
        """
        installed = {name.lower() for name in self.installed_fonts()}
        return filter_missing_fonts(font_names, installed)

    def get_missing_fonts(self, book_path: Path) -> tuple[list[str], bool]:
        """Ask the renderer which fonts a book uses and return those not installed.

        Returns:
            (missing font names, ok). ok is False if the fonts could not be
            determined, in which case the list is empty and must not be read
            as "nothing missing".
        """
        with tempfile.TemporaryDirectory(prefix="harvester-fonts-") as tmpdir:
            report_path = Path(tmpdir) / "fonts.txt"
            result = self.renderer.run_tool(
                ["font-report", "--item-path", str(book_path), "--report-path", str(report_path)],
                GET_FONTS_TIMEOUT_SECS,
            )

            if not result.succeeded or not report_path.exists():
                logger.error(f"Could not determine fonts from book located at {book_path}")
                return [], False

            book_fonts = read_font_report(report_path)

        try:
            return self.find_missing(book_fonts), True
        except FontProbeError as e:
            logger.error(f"Could not list installed fonts: {e}")
            return [], False

    def mark_reported(self, font_name: str) -> bool:
        """Record that font_name was reported. Returns False if it already had been."""
        if font_name in self.reported_missing:
            return False
        self.reported_missing.add(font_name)
        return True
