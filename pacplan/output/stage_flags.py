"""Stage flags — tell the CI pipeline which apply stages have work to do.

Two flags are emitted after every successful build: ``deployPolicyChanges``
and ``deployRoleChanges``, each ``yes`` or ``no``. How a flag reaches the
pipeline depends on the CI system, so each one gets its own sink.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, TextIO

import click

from pacplan.errors import ConfigurationError
from pacplan.planning.aggregator import PlanOutcome

logger = logging.getLogger(__name__)

POLICY_FLAG = "deployPolicyChanges"
ROLE_FLAG = "deployRoleChanges"
GITLAB_ENV_FILE = "pacplan.env"
DEVOPS_TYPES = ("ado", "gitlab", "github", "none")


def flag_values(outcome: PlanOutcome) -> dict[str, str]:
    return {
        POLICY_FLAG: "yes" if outcome.policy_changes else "no",
        ROLE_FLAG: "yes" if outcome.role_changes else "no",
    }


class StageFlagSink(ABC):
    """Destination for the stage flags of one CI system."""

    name: str = ""

    @abstractmethod
    def emit(self, flags: dict[str, str]) -> None:
        """Publish every flag."""

    def publish(self, outcome: PlanOutcome) -> dict[str, str]:
        flags = flag_values(outcome)
        self.emit(flags)
        logger.debug("Stage flags via %s: %s", self.name, flags)
        return flags


class AzureDevOpsSink(StageFlagSink):
    """Azure DevOps logging commands on stdout, as output variables."""

    name = "ado"

    def __init__(self, echo: Callable[[str], None] = click.echo):
        self.echo = echo

    def emit(self, flags: dict[str, str]) -> None:
        for key, value in flags.items():
            self.echo(f"##vso[task.setvariable variable={key};isOutput=true]{value}")


class GitLabSink(StageFlagSink):
    """A dotenv file for a GitLab ``artifacts:reports:dotenv`` report."""

    name = "gitlab"

    def __init__(self, output_folder: Path):
        self.path = Path(output_folder) / GITLAB_ENV_FILE

    def emit(self, flags: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            _write_lines(f, flags)


class GitHubSink(StageFlagSink):
    """Step outputs appended to the file named by ``GITHUB_OUTPUT``."""

    name = "github"

    def __init__(self, output_file: str | None = None):
        output_file = output_file or os.environ.get("GITHUB_OUTPUT")
        if not output_file:
            raise ConfigurationError("GITHUB_OUTPUT is not set; --devops-type github only works inside GitHub Actions")
        self.path = Path(output_file)

    def emit(self, flags: dict[str, str]) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            _write_lines(f, flags)


class NullSink(StageFlagSink):
    """Emits nothing."""

    name = "none"

    def emit(self, flags: dict[str, str]) -> None:
        return None


def _write_lines(f: TextIO, flags: dict[str, str]) -> None:
    for key, value in flags.items():
        f.write(f"{key}={value}\n")


def get_sink(devops_type: str, output_folder: Path) -> StageFlagSink:
    """Return the sink for a ``--devops-type`` value.

    Raises:
        ConfigurationError: If the type is unknown or its CI context is missing.
    """
    if devops_type == "ado":
        return AzureDevOpsSink()
    if devops_type == "gitlab":
        return GitLabSink(output_folder)
    if devops_type == "github":
        return GitHubSink()
    if devops_type == "none":
        return NullSink()
    raise ConfigurationError(f"Unknown devops type '{devops_type}'. Must be one of: {list(DEVOPS_TYPES)}")
