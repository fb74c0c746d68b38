import json
from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from eth_typing import ChecksumAddress

from chainplan.artifacts import Artifact
from chainplan.config import _load_json
from chainplan.ledger import DeploymentLedger

ChainId = int
ContractName = str
ABI = List[Dict[str, Any]]


STANDARD_REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


class RegistryEntry(NamedTuple):
    """Represents a single entry in a contract registry."""

    chain_id: ChainId
    name: ContractName
    address: ChecksumAddress
    abi: ABI
    tx_hash: str
    block_number: int
    deployer: str


def read_registry(filepath: Path) -> List[RegistryEntry]:
    data = _load_json(filepath)
    registry_entries = list()
    for chain_id, entries in data.items():
        for contract_name, artifacts in entries.items():
            registry_entry = RegistryEntry(
                chain_id=int(chain_id),
                name=contract_name,
                address=artifacts["address"],
                abi=artifacts["abi"],
                tx_hash=artifacts["tx_hash"],
                block_number=artifacts["block_number"],
                deployer=artifacts["deployer"],
            )
            registry_entries.append(registry_entry)
    return registry_entries


def write_registry(
    entries: List[RegistryEntry], filepath: Path, silent: bool = False, replace: bool = False
) -> Path:
    """
    Writes a contract registry to a file. Entries for chains not yet in an existing
    registry are merged into it. Overlapping chains are written to a separate
    `.unmerged.json` file unless `replace` is set, in which case they supersede
    the existing entries of those chains.
    """

    if not entries:
        print("No entries provided.")
        return filepath

    # Sort registry entries to enforce common order
    entries = sorted(entries, key=lambda entry: (str(entry.chain_id), entry.name))

    data = defaultdict(dict)
    for entry in entries:
        entry_abi = list(entry.abi)
        entry_abi.sort(key=lambda d: (d["type"], d.get("name", "")))

        data[str(entry.chain_id)][entry.name] = {
            "address": entry.address,
            "abi": entry_abi,
            "tx_hash": entry.tx_hash,
            "block_number": int(entry.block_number or 0),
            "deployer": entry.deployer,
        }

    filepath.parent.mkdir(parents=True, exist_ok=True)

    # If the file already exists, attempt to merge the data, if not create a new file
    if filepath.exists():
        if not silent:
            print(f"Updating existing registry at {filepath}.")
        existing_data = _load_json(filepath)

        if any(chain_id in existing_data for chain_id in data) and not replace:
            filepath = filepath.with_suffix(".unmerged.json")
            if not silent:
                print(
                    "Cannot merge registries with overlapping chain IDs.\n"
                    f"Writing to {filepath} to avoid overwriting existing data."
                )
        else:
            existing_data.update(data)
            data = existing_data
    elif not silent:
        print(f"Creating new registry at {filepath}.")

    with open(filepath, "w") as file:
        json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)

    return filepath


def registry_from_ledger(
    ledger: DeploymentLedger,
    artifacts: Dict[ContractName, Artifact],
    chain_id: ChainId,
    deployer: str,
    output_filepath: Path,
    registry_names: Optional[Dict[ContractName, ContractName]] = None,
) -> Path:
    """Creates a contract registry from the confirmed entries of a ledger."""
    registry_names = registry_names or dict()
    entries = list()
    for record in ledger.confirmed():
        artifact = artifacts.get(record.name)
        entries.append(
            RegistryEntry(
                chain_id=chain_id,
                name=registry_names.get(record.name, record.name),
                address=record.address,
                abi=list(artifact.abi) if artifact else [],
                tx_hash=record.tx_hash,
                block_number=record.block_number,
                deployer=deployer,
            )
        )
    # the ledger is the full record of its chain, so it replaces earlier exports
    output_filepath = write_registry(entries=entries, filepath=output_filepath, replace=True)
    print(f"(i) Registry written to {output_filepath}!")
    return output_filepath
