from typing import List, NamedTuple, Optional, Sequence

from chainplan.components import WiringEdge
from chainplan.config import OrchestrationOptions
from chainplan.constants import WiringStatus
from chainplan.errors import ConfirmationFailedError, DeploymentRuntimeError, WiringError
from chainplan.ledger import DeploymentLedger
from chainplan.network import NetworkLayer


class WiringResult(NamedTuple):
    edge: WiringEdge
    status: WiringStatus
    tx_hash: Optional[str] = None
    error: Optional[str] = None


class WiringPhase:
    """
    Issues the post-deployment setter calls, in declaration order, once every
    component they touch is confirmed. Setters are expected to be idempotent,
    so applied edges are never rolled back and re-running the phase is safe.
    """

    def __init__(self, network: NetworkLayer, options: Optional[OrchestrationOptions] = None):
        self.network = network
        self.options = options or OrchestrationOptions()

    def apply(self, edges: Sequence[WiringEdge], ledger: DeploymentLedger) -> List[WiringResult]:
        # resolve everything up front; nothing is issued if any address is unconfirmed
        resolved = list()
        for edge in edges:
            source_address = ledger.confirmed_address(edge.source)
            target_address = ledger.confirmed_address(edge.target)
            resolved.append((edge, source_address, target_address))

        if edges:
            print(f"\nWiring {len(edges)} edges...")

        results = list()
        for index, (edge, source_address, target_address) in enumerate(resolved):
            try:
                result = self._apply_edge(edge, source_address, target_address)
            except DeploymentRuntimeError as error:
                results.append(WiringResult(edge=edge, status=WiringStatus.FAILED, error=error.reason))
                results.extend(
                    WiringResult(edge=skipped, status=WiringStatus.SKIPPED)
                    for skipped, _, _ in resolved[index + 1 :]
                )
                print(f"(!) {edge} failed: {error.reason}")
                raise WiringError(edge, error.reason, results=results) from error
            results.append(result)

        return results

    def _apply_edge(self, edge: WiringEdge, source_address, target_address) -> WiringResult:
        print(f"(i) {edge.target}[{target_address[:10]}].{edge.setter}({source_address})")
        handle = self.network.submit_call(target_address, edge.setter, [source_address])
        confirmation = self.network.await_confirmation(
            handle, timeout=self.options.confirmation_timeout
        )
        if not confirmation.success:
            raise ConfirmationFailedError(edge.target, confirmation.error or "transaction failed")
        return WiringResult(edge=edge, status=WiringStatus.APPLIED, tx_hash=handle.tx_hash)
