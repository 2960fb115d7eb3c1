"""Harvester configuration: environments, options and connection settings."""

import os
import socket
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from harvester.acquisition.models import HarvestMode, Version


VERSION = "1.4.0"

DOWNLOAD_BUCKETS = {
    "prod": "library-books",
    "test": "library-books-unittests",
    "sandbox": "library-books-sandbox",
}

UPLOAD_BUCKETS = {
    "prod": "library-harvest",
    "test": "library-harvest-unittests",
    "sandbox": "library-harvest-sandbox",
}


class EnvironmentSetting(Enum):
    """Deployment environment a harvester talks to."""

    DEFAULT = "Default"
    LOCAL = "Local"
    DEV = "Dev"
    TEST = "Test"
    PROD = "Prod"

    @classmethod
    def parse(cls, value: str) -> "EnvironmentSetting":
        for member in cls:
            if member.value.lower() == value.lower():
                return member
        raise ValueError(f"Unknown environment: {value}")


def get_env_or_fallback(env: EnvironmentSetting, fallback: EnvironmentSetting) -> EnvironmentSetting:
    """Return env unless it is DEFAULT, in which case return fallback."""
    return fallback if env == EnvironmentSetting.DEFAULT else env


def bucket_tier(env: EnvironmentSetting) -> str:
    if env == EnvironmentSetting.PROD:
        return "prod"
    if env == EnvironmentSetting.TEST:
        return "test"
    return "sandbox"


def get_current_version() -> Version:
    """Version of this harvester build, reduced to (major, minor)."""
    return Version.parse(VERSION)


@dataclass
class ParseSettings:
    """Connection settings for the remote book registry."""

    server_url: str
    app_id: str
    api_key: str = ""

    @classmethod
    def from_env(cls, env: EnvironmentSetting) -> "ParseSettings":
        """Read settings from PARSE_*_<ENV> variables, falling back to PARSE_*.

        Raises:
            ValueError: If no server URL or application id is configured.
        """
        suffix = env.value.upper()

        def lookup(name: str) -> str:
            return os.environ.get(f"{name}_{suffix}") or os.environ.get(name, "")

        server_url = lookup("PARSE_URL")
        app_id = lookup("PARSE_APP_ID")
        if not server_url or not app_id:
            raise ValueError(f"Registry settings missing for environment {env.value} (set PARSE_URL and PARSE_APP_ID)")

        return cls(server_url=server_url.rstrip("/"), app_id=app_id, api_key=lookup("PARSE_API_KEY"))


@dataclass
class IssueTrackerSettings:
    """Where issue reports are filed. An empty base_url disables filing."""

    base_url: str = ""
    token: str = ""
    project_id: str = ""

    @classmethod
    def from_env(cls) -> "IssueTrackerSettings":
        return cls(
            base_url=os.environ.get("YOUTRACK_URL", "").rstrip("/"),
            token=os.environ.get("YOUTRACK_TOKEN", ""),
            project_id=os.environ.get("YOUTRACK_PROJECT", ""),
        )


@dataclass
class HarvesterOptions:
    """Run configuration for a harvester, as parsed from the command line."""

    mode: HarvestMode = HarvestMode.DEFAULT
    count: int = -1
    loop: bool = False
    read_only: bool = False
    query_where: str = ""
    environment: EnvironmentSetting = EnvironmentSetting.DEFAULT
    parse_db_environment: EnvironmentSetting = EnvironmentSetting.DEFAULT
    identifier: str = field(default_factory=socket.gethostname)
    renderer_command: str = field(default_factory=lambda: os.environ.get("HARVESTER_RENDERER", "book-renderer"))
    download_root: Optional[Path] = None
    verbose: bool = False

    @property
    def registry_environment(self) -> EnvironmentSetting:
        return get_env_or_fallback(self.parse_db_environment, self.environment)

    def get_download_root(self) -> Path:
        """Scratch directory for downloaded books, unique per harvester identifier."""
        if self.download_root is not None:
            return Path(self.download_root)
        return Path(tempfile.gettempdir()) / "harvester" / self.identifier

    def pretty_print(self) -> str:
        return "\n".join(
            [
                f"\tmode: {self.mode.value}",
                f"\tenvironment: {self.environment.value}",
                f"\tparseDBEnvironment: {self.parse_db_environment.value}",
                f"\tqueryWhere: {self.query_where}",
                f"\tcount: {self.count}",
                f"\tloop: {self.loop}",
                f"\treadOnly: {self.read_only}",
            ]
        )
