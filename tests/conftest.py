from collections import OrderedDict
from itertools import count
from typing import NamedTuple, Optional

import pytest
from eth_utils import to_checksum_address

from chainplan.artifacts import Artifact, StaticArtifactResolver
from chainplan.components import Component, WiringEdge
from chainplan.config import OrchestrationOptions
from chainplan.constants import DeploymentKind
from chainplan.errors import ConfirmationTimeoutError, SubmissionError
from chainplan.ledger import DeploymentLedger
from chainplan.network import Confirmation, NetworkLayer, PendingHandle

DEPLOYER = to_checksum_address("0x" + "de" * 20)


class Submission(NamedTuple):
    kind: str
    name: str
    args: list
    links: dict
    initializer: Optional[str] = None


class Call(NamedTuple):
    target: str
    method: str
    args: list


class FakeTransaction(NamedTuple):
    label: str
    address: Optional[str]
    block_number: int
    implementation: Optional[str] = None


class FakeNetwork(NetworkLayer):
    """
    In-memory network layer. Behaviour per label (component or setter name):
    `reject` maps a label to how many submissions are rejected, `revert` and
    `timeout` fail the confirmation, `interrupt` raises KeyboardInterrupt while awaiting,
    `unreachable` raises a ConnectionError while awaiting.
    """

    def __init__(self, reject=None, revert=(), timeout=(), interrupt=(), unreachable=()):
        self.reject = dict(reject or {})
        self.revert = set(revert)
        self.timeout = set(timeout)
        self.interrupt = set(interrupt)
        self.unreachable = set(unreachable)
        self.submissions = list()
        self.calls = list()
        self.awaited = list()
        self.recovered = list()
        self.transactions = OrderedDict()
        self.on_submit = None
        self._counter = count(1)

    def _next_address(self) -> str:
        return to_checksum_address(f"0x{next(self._counter):040x}")

    def _transaction(self, label: str, address=None, implementation=None) -> PendingHandle:
        if self.reject.get(label, 0) > 0:
            self.reject[label] -= 1
            raise SubmissionError(label, "rejected by node")
        tx_hash = f"0x{len(self.transactions) + 1:064x}"
        self.transactions[tx_hash] = FakeTransaction(
            label=label,
            address=address,
            block_number=len(self.transactions) + 100,
            implementation=implementation,
        )
        return PendingHandle(label=label, tx_hash=tx_hash, implementation=implementation)

    def submit_deployment(self, artifact, args, linked_addresses):
        if self.on_submit:
            self.on_submit(artifact.name)
        self.submissions.append(Submission("direct", artifact.name, list(args), dict(linked_addresses)))
        return self._transaction(artifact.name, address=self._next_address())

    def submit_proxied_deployment(self, artifact, init_args, linked_addresses, initializer):
        if self.on_submit:
            self.on_submit(artifact.name)
        self.submissions.append(
            Submission("proxied", artifact.name, list(init_args), dict(linked_addresses), initializer)
        )
        implementation = self._next_address()
        return self._transaction(
            artifact.name, address=self._next_address(), implementation=implementation
        )

    def submit_call(self, target, method, args):
        self.calls.append(Call(target, method, list(args)))
        return self._transaction(method)

    def await_confirmation(self, handle, timeout=None):
        self.awaited.append(handle.tx_hash)
        transaction = self.transactions[handle.tx_hash]
        if transaction.label in self.interrupt:
            raise KeyboardInterrupt
        if transaction.label in self.unreachable:
            raise ConnectionError("provider unreachable")
        if transaction.label in self.timeout:
            raise ConfirmationTimeoutError(handle.label, f"not confirmed within {timeout}s")
        if transaction.label in self.revert:
            return Confirmation(success=False, error="execution reverted")
        return Confirmation(
            success=True,
            address=transaction.address,
            block_number=transaction.block_number,
            implementation=handle.implementation,
        )

    def recover(self, label, tx_hash):
        self.recovered.append(tx_hash)
        return PendingHandle(label=label, tx_hash=tx_hash)

    @property
    def submitted_names(self):
        return [submission.name for submission in self.submissions]


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def ledger():
    return DeploymentLedger()


@pytest.fixture
def options():
    return OrchestrationOptions(unsafe_allow_linking=True)


@pytest.fixture
def components():
    """Lib, Token, Registry(links Lib), SaleA(links Lib, proxied)."""
    return [
        Component("Lib"),
        Component("Token"),
        Component("Registry", libraries=["Lib"]),
        Component("SaleA", libraries=["Lib"], kind=DeploymentKind.PROXIED),
    ]


@pytest.fixture
def wiring():
    return [
        WiringEdge(source="Token", target="SaleA", setter="setTokenAddr"),
        WiringEdge(source="Registry", target="SaleA", setter="setRegistryAddr"),
    ]


def _artifact(name, libraries=()):
    return Artifact(
        name=name,
        abi=[{"type": "constructor", "inputs": [], "stateMutability": "nonpayable"}],
        bytecode="0x6080",
        libraries=list(libraries),
    )


@pytest.fixture
def resolver():
    return StaticArtifactResolver(
        {
            "Lib": _artifact("Lib"),
            "Token": _artifact("Token"),
            "Registry": _artifact("Registry", libraries=["Lib"]),
            "SaleA": _artifact("SaleA", libraries=["Lib"]),
            "Auction": _artifact("Auction"),
        }
    )
