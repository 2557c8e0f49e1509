"""Global settings and folder layout.

Settings live in ``global-settings.yaml`` at the root of the definitions
folder. They name the owner identifier stamped on every plan and describe
each governance environment (``pacSelector``): its deployment root scope,
the managed identity location for remediation identities, where its
inventory snapshot lives, and which deployed resources may be deleted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import yaml

from pacplan.errors import ConfigurationError

SETTINGS_FILE_NAMES = ("global-settings.yaml", "global-settings.yml", "global-settings.json")
DEFAULT_DEFINITIONS_FOLDER = "Definitions"
DEFAULT_OUTPUT_FOLDER = "Output"


class DesiredStateStrategy(Enum):
    """Which deployed-only resources the plan may delete."""

    FULL = "full"  # Everything not owned by another pacOwnerId
    OWNED_ONLY = "ownedOnly"  # Only resources stamped with our pacOwnerId


@dataclass
class DesiredStatePolicy:
    strategy: DesiredStateStrategy = DesiredStateStrategy.FULL
    excluded_scopes: list[str] = field(default_factory=list)  # Names or ids


@dataclass
class PacEnvironment:
    """One governance environment."""

    pac_selector: str
    deployment_root_scope: str
    managed_identity_location: str = ""
    inventory_snapshot: str = ""  # Relative to the definitions folder
    desired_state: DesiredStatePolicy = field(default_factory=DesiredStatePolicy)


@dataclass
class GlobalSettings:
    pac_owner_id: str
    environments: dict[str, PacEnvironment] = field(default_factory=dict)
    source_path: str = ""

    @property
    def selectors(self) -> list[str]:
        return sorted(self.environments)

    def environment(self, pac_selector: str) -> PacEnvironment:
        """Return the environment for a selector.

        Raises:
            ConfigurationError: If the selector is not defined.
        """
        env = self.environments.get(pac_selector)
        if env is None:
            known = ", ".join(self.selectors) or "(none)"
            raise ConfigurationError(
                f"Environment '{pac_selector}' is not defined in {self.source_path or 'global settings'}. "
                f"Known environments: {known}"
            )
        return env


@dataclass
class PacFolders:
    """Definitions and output folder layout."""

    definitions: Path
    output: Path

    @property
    def policy_definitions(self) -> Path:
        return self.definitions / "policyDefinitions"

    @property
    def policy_set_definitions(self) -> Path:
        return self.definitions / "policySetDefinitions"

    @property
    def policy_assignments(self) -> Path:
        return self.definitions / "policyAssignments"

    @property
    def policy_exemptions(self) -> Path:
        return self.definitions / "policyExemptions"

    def plans_folder(self, pac_selector: str) -> Path:
        return self.output / f"plans-{pac_selector}"


def resolve_folders(
    definitions_folder: str | Path | None = None,
    output_folder: str | Path | None = None,
) -> PacFolders:
    return PacFolders(
        definitions=Path(definitions_folder or DEFAULT_DEFINITIONS_FOLDER),
        output=Path(output_folder or DEFAULT_OUTPUT_FOLDER),
    )


def find_settings_file(definitions_folder: str | Path) -> Path:
    folder = Path(definitions_folder)
    for file_name in SETTINGS_FILE_NAMES:
        candidate = folder / file_name
        if candidate.is_file():
            return candidate
    raise ConfigurationError(
        f"No global settings file found in {folder} (expected one of: {', '.join(SETTINGS_FILE_NAMES)})"
    )


def load_settings(definitions_folder: str | Path) -> GlobalSettings:
    """Load and validate the global settings of a definitions folder."""
    path = find_settings_file(definitions_folder)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid settings file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")

    owner = data.get("pacOwnerId")
    if not owner:
        raise ConfigurationError(f"Settings file {path} is missing required 'pacOwnerId'")

    environments: dict[str, PacEnvironment] = {}
    for i, env_data in enumerate(data.get("pacEnvironments") or []):
        env = _parse_environment(env_data, i, path)
        if env.pac_selector in environments:
            raise ConfigurationError(f"Duplicate pacSelector '{env.pac_selector}' in {path}")
        environments[env.pac_selector] = env

    if not environments:
        raise ConfigurationError(f"Settings file {path} defines no pacEnvironments")

    return GlobalSettings(pac_owner_id=str(owner), environments=environments, source_path=str(path))


def _parse_environment(env_data: object, index: int, path: Path) -> PacEnvironment:
    if not isinstance(env_data, dict):
        raise ConfigurationError(f"pacEnvironments[{index}] in {path} must be a mapping")

    selector = env_data.get("pacSelector")
    root_scope = env_data.get("deploymentRootScope")
    if not selector:
        raise ConfigurationError(f"pacEnvironments[{index}] in {path} is missing 'pacSelector'")
    if not root_scope:
        raise ConfigurationError(f"Environment '{selector}' in {path} is missing 'deploymentRootScope'")

    desired = env_data.get("desiredState") or {}
    if not isinstance(desired, dict):
        raise ConfigurationError(f"Environment '{selector}' has a desiredState that is not a mapping")
    try:
        strategy = DesiredStateStrategy(desired.get("strategy", DesiredStateStrategy.FULL.value))
    except ValueError:
        raise ConfigurationError(
            f"Environment '{selector}' has invalid desiredState.strategy '{desired.get('strategy')}'. "
            f"Must be one of: {[s.value for s in DesiredStateStrategy]}"
        )

    return PacEnvironment(
        pac_selector=str(selector),
        deployment_root_scope=str(root_scope),
        managed_identity_location=str(env_data.get("managedIdentityLocation", "") or ""),
        inventory_snapshot=str(env_data.get("inventorySnapshot", "") or ""),
        desired_state=DesiredStatePolicy(
            strategy=strategy,
            excluded_scopes=[str(s) for s in desired.get("excludedScopes") or []],
        ),
    )
