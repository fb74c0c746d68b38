import json
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from chainplan.errors import ArtifactNotFoundError


class Artifact(NamedTuple):
    """A deployable build output and the libraries it must be linked against."""

    name: str
    abi: List[Dict[str, Any]]
    bytecode: Optional[str] = None
    libraries: List[str] = []
    source: Any = None  # backend-specific handle, e.g. an ape ContractContainer


class ArtifactResolver:
    def resolve(self, name: str) -> Artifact:
        raise NotImplementedError


class StaticArtifactResolver(ArtifactResolver):
    def __init__(self, artifacts: Dict[str, Artifact]):
        self.artifacts = dict(artifacts)

    def resolve(self, name: str) -> Artifact:
        try:
            return self.artifacts[name]
        except KeyError:
            raise ArtifactNotFoundError(name)


def _link_reference_names(link_references: Dict[str, Dict[str, Any]]) -> List[str]:
    """Library names from hardhat-style `linkReferences` ({source: {library: [offsets]}})."""
    names = list()
    for libraries in link_references.values():
        for library in libraries:
            if library not in names:
                names.append(library)
    return names


class BuildDirectoryResolver(ArtifactResolver):
    """Reads `<name>.json` build outputs from a directory tree."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _find(self, name: str) -> Optional[Path]:
        filename = f"{name}.json"
        direct = self.directory / filename
        if direct.exists():
            return direct
        for filepath in sorted(self.directory.rglob(filename)):
            if not filepath.name.endswith(".dbg.json"):
                return filepath
        return None

    def resolve(self, name: str) -> Artifact:
        filepath = self._find(name) if self.directory.exists() else None
        if filepath is None:
            raise ArtifactNotFoundError(name)

        with open(filepath, "r") as file:
            data = json.load(file)

        return Artifact(
            name=data.get("contractName", name),
            abi=data.get("abi", []),
            bytecode=data.get("bytecode"),
            libraries=_link_reference_names(data.get("linkReferences") or {}),
            source=filepath,
        )
