from abc import ABC, abstractmethod
from typing import Any, Dict, List, NamedTuple, Optional

from eth_typing import ChecksumAddress

from chainplan.artifacts import Artifact


class PendingHandle(NamedTuple):
    """
    Returned by a submission; `tx_hash` is what the ledger persists. Proxied
    submissions also carry the address of the logic contract behind the proxy.
    """

    label: str
    tx_hash: str
    payload: Any = None
    implementation: Optional[ChecksumAddress] = None


class Confirmation(NamedTuple):
    success: bool
    address: Optional[ChecksumAddress] = None
    error: Optional[str] = None
    block_number: Optional[int] = None
    implementation: Optional[ChecksumAddress] = None


class NetworkLayer(ABC):
    """
    Signs and broadcasts deployments and calls. Submissions return as soon as a
    transaction hash is known; `await_confirmation` blocks until it is final.

    Implementations raise `SubmissionError` when a submission is rejected and
    `ConfirmationTimeoutError` when the wait exceeds `timeout`.
    """

    @abstractmethod
    def submit_deployment(
        self, artifact: Artifact, args: List[Any], linked_addresses: Dict[str, ChecksumAddress]
    ) -> PendingHandle:
        raise NotImplementedError

    @abstractmethod
    def submit_proxied_deployment(
        self,
        artifact: Artifact,
        init_args: List[Any],
        linked_addresses: Dict[str, ChecksumAddress],
        initializer: str,
    ) -> PendingHandle:
        """Deploys the logic contract, then a proxy initialized with `initializer(*init_args)`."""
        raise NotImplementedError

    @abstractmethod
    def submit_call(self, target: ChecksumAddress, method: str, args: List[Any]) -> PendingHandle:
        raise NotImplementedError

    @abstractmethod
    def await_confirmation(self, handle: PendingHandle, timeout: Optional[int] = None) -> Confirmation:
        raise NotImplementedError

    @abstractmethod
    def recover(self, label: str, tx_hash: str) -> PendingHandle:
        """Rebuilds a handle for a transaction submitted by an earlier run."""
        raise NotImplementedError
