import json
import typing
from pathlib import Path
from typing import Any, Dict, List, NamedTuple

import yaml

from chainplan.components import Component, WiringEdge
from chainplan.constants import (
    DEFAULT_CONFIRMATION_TIMEOUT,
    DEFAULT_SUBMISSION_RETRIES,
    DEFAULT_WORKERS,
    LEDGER_SUFFIX,
    REGISTRY_DIR,
)
from chainplan.errors import DeploymentConfigError, UnsafeLinkingError


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> dict:
    """Loads a JSON file."""
    with open(filepath, "r") as file:
        return json.load(file)


class OrchestrationOptions(NamedTuple):
    # permits proxied components that link an external library
    unsafe_allow_linking: bool = False
    workers: int = DEFAULT_WORKERS
    confirmation_timeout: int = DEFAULT_CONFIRMATION_TIMEOUT
    submission_retries: int = DEFAULT_SUBMISSION_RETRIES

    @classmethod
    def from_config(cls, config: Dict) -> "OrchestrationOptions":
        options = config.get("options") or dict()
        unknown = set(options) - set(cls._fields)
        if unknown:
            raise DeploymentConfigError(f"Unknown options: {', '.join(sorted(unknown))}")
        result = cls(**options)
        if result.workers < 1:
            raise DeploymentConfigError("'workers' must be at least 1.")
        if result.submission_retries < 0:
            raise DeploymentConfigError("'submission_retries' cannot be negative.")
        return result


def _get_component_names(config: typing.Dict) -> List[str]:
    names = list()
    for contract_info in config["contracts"]:
        if isinstance(contract_info, str):
            names.append(contract_info)
        elif isinstance(contract_info, dict):
            names.extend(list(contract_info.keys()))
        else:
            raise DeploymentConfigError("Malformed contracts YAML.")

    return names


def get_artifact_filepath(config: Dict) -> Path:
    """Returns the filepath of the registry artifact."""
    artifact_config = config.get("artifacts") or {}
    artifact_dir = Path(artifact_config.get("dir", REGISTRY_DIR))
    filename = artifact_config.get("filename")
    if not filename:
        raise DeploymentConfigError("artifact filename is not set in params file.")
    return artifact_dir / filename


def get_ledger_filepath(config: Dict) -> Path:
    """Returns the ledger filepath; defaults to a sibling of the registry artifact."""
    artifact_config = config.get("artifacts") or {}
    ledger = artifact_config.get("ledger")
    if ledger:
        return Path(artifact_config.get("dir", REGISTRY_DIR)) / ledger
    registry_filepath = get_artifact_filepath(config)
    return registry_filepath.with_name(registry_filepath.stem + LEDGER_SUFFIX)


def validate_config(config: Dict) -> None:
    """Checks the structure of a deployment params file."""
    print("Validating parameters YAML...")

    if not isinstance(config, dict):
        raise DeploymentConfigError("Malformed params file.")

    deployment = config.get("deployment")
    if not deployment:
        raise DeploymentConfigError("deployment is not set in params file.")

    if not deployment.get("chain_id"):
        raise DeploymentConfigError("chain_id is not set in params file.")

    if not config.get("contracts"):
        raise DeploymentConfigError("Params file missing 'contracts' field.")

    wiring = config.get("wiring") or []
    if not isinstance(wiring, list):
        raise DeploymentConfigError("'wiring' must be a list.")


def check_linking(components: List[Component], options: OrchestrationOptions) -> None:
    """Proxied components may only link libraries when explicitly allowed."""
    if options.unsafe_allow_linking:
        return
    for component in components:
        if component.proxied and component.libraries:
            raise UnsafeLinkingError(
                f"{component.name} is proxied and links {', '.join(component.libraries)}; "
                "set 'unsafe_allow_linking' to allow external library linking."
            )


class DeploymentConfig:
    """A parsed and validated deployment params file."""

    def __init__(self, config: Dict, path: Path = None):
        validate_config(config)
        self.path = path
        self.config = config
        self.name = config["deployment"].get("name", path.stem if path else "deployment")
        self.chain_id = int(config["deployment"]["chain_id"])
        self.constants: Dict[str, Any] = config.get("constants") or dict()
        self.options = OrchestrationOptions.from_config(config)

        component_names = _get_component_names(config)
        self.components = [
            Component.from_config(info, component_names, self.constants)
            for info in config["contracts"]
        ]
        self.wiring: List[WiringEdge] = list()
        for wiring_info in config.get("wiring") or []:
            self.wiring.extend(WiringEdge.from_config(wiring_info))

        check_linking(self.components, self.options)

    @classmethod
    def from_yaml(cls, filepath: Path) -> "DeploymentConfig":
        config = _load_yaml(filepath)
        return cls(config=config, path=filepath)

    @property
    def registry_filepath(self) -> Path:
        return get_artifact_filepath(self.config)

    @property
    def ledger_filepath(self) -> Path:
        return get_ledger_filepath(self.config)
