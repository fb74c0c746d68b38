import threading
from collections import OrderedDict
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from typing import Dict, List, Optional

from eth_typing import ChecksumAddress

from chainplan.artifacts import Artifact, ArtifactResolver
from chainplan.components import (
    Component,
    DeploymentStep,
    ResolutionContext,
    resolve_params,
)
from chainplan.config import OrchestrationOptions, check_linking
from chainplan.constants import StepStatus
from chainplan.errors import (
    ConfirmationFailedError,
    DeploymentConfigError,
    DeploymentRuntimeError,
    RunCancelled,
    SubmissionError,
    UnresolvedAddressError,
)
from chainplan.ledger import DeploymentLedger, LedgerRecord
from chainplan.network import NetworkLayer, PendingHandle


def _for_step(error: DeploymentRuntimeError, name: str) -> DeploymentRuntimeError:
    """Re-labels a network-layer error with the component it happened for."""
    if error.component == name:
        return error
    return type(error)(name, error.reason)


def preflight(
    steps: List[DeploymentStep], resolver: ArtifactResolver, options: OrchestrationOptions
) -> Dict[str, Artifact]:
    """
    Resolves the artifact of every step and checks that each library an artifact
    must be linked against is declared on its component. Makes no network calls.
    """
    components = OrderedDict((step.name, step.component) for step in steps)
    check_linking(list(components.values()), options)

    artifacts = OrderedDict()
    for step in steps:
        artifact = resolver.resolve(step.component.artifact)
        declared = [
            components[name].artifact if name in components else name
            for name in step.component.libraries
        ]
        missing = [library for library in artifact.libraries if library not in declared]
        if missing:
            raise DeploymentConfigError(
                f"{step.name} requires libraries that are not declared: {', '.join(missing)}"
            )
        artifacts[step.name] = artifact
    return artifacts


class Orchestrator:
    """
    Deploys steps in dependency order, one confirmed component at a time
    (or several independent ones when `options.workers` > 1), recording
    every transition in the ledger so that a later run can resume.
    """

    def __init__(
        self,
        network: NetworkLayer,
        resolver: ArtifactResolver,
        ledger: Optional[DeploymentLedger] = None,
        options: Optional[OrchestrationOptions] = None,
        deployer: Optional[ChecksumAddress] = None,
    ):
        self.network = network
        self.resolver = resolver
        self.ledger = ledger if ledger is not None else DeploymentLedger()
        self.options = options or OrchestrationOptions()
        self.deployer = deployer
        self._cancelled = threading.Event()
        self._artifacts: Dict[str, Artifact] = dict()
        self._components: Dict[str, Component] = dict()

    @property
    def artifacts(self) -> Dict[str, Artifact]:
        """Artifacts resolved by the last `prepare`, keyed by component name."""
        return dict(self._artifacts)

    def cancel(self) -> None:
        """Stops the run before the next step is submitted."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def prepare(self, steps: List[DeploymentStep]) -> Dict[str, Artifact]:
        self._components = OrderedDict((step.name, step.component) for step in steps)
        return preflight(steps, self.resolver, self.options)

    def run(self, steps: List[DeploymentStep]) -> DeploymentLedger:
        self._artifacts = self.prepare(steps)
        print(f"\nDeploying {len(steps)} components: {', '.join(s.name for s in steps)}")

        if self.options.workers > 1:
            self._run_concurrently(steps)
        else:
            self._run_sequentially(steps)
        return self.ledger

    def _run_sequentially(self, steps: List[DeploymentStep]) -> None:
        for step in steps:
            if self.cancelled:
                raise RunCancelled(step.name, "run cancelled before submission")
            self._execute(step)

    def _run_concurrently(self, steps: List[DeploymentStep]) -> None:
        remaining = list(steps)
        futures = dict()
        errors = list()
        with ThreadPoolExecutor(max_workers=self.options.workers) as executor:
            while remaining or futures:
                if not errors and not self.cancelled:
                    for step in [s for s in remaining if self._ready(s)]:
                        remaining.remove(step)
                        futures[executor.submit(self._execute, step)] = step
                if not futures:
                    break
                done, _ = wait(futures, return_when=FIRST_COMPLETED)
                for future in done:
                    futures.pop(future)
                    error = future.exception()
                    if error is not None:
                        errors.append(error)

        if errors:
            raise errors[0]
        if remaining:
            if self.cancelled:
                raise RunCancelled(remaining[0].name, "run cancelled before submission")
            raise UnresolvedAddressError(remaining[0].name, reason="has unconfirmed dependencies")

    def _ready(self, step: DeploymentStep) -> bool:
        return all(self.ledger.status(name) == StepStatus.CONFIRMED for name in step.dependencies)

    def _execute(self, step: DeploymentStep) -> None:
        entry = self.ledger.claim(step.name)
        if entry is not None and entry.status == StepStatus.CONFIRMED:
            self._reuse(step, entry)
            return

        try:
            if entry is not None and entry.status == StepStatus.SUBMITTED:
                print(f"\n(i) Resuming {step.name}; awaiting transaction {entry.tx_hash}")
                handle = self.network.recover(step.name, entry.tx_hash)
                if handle.implementation is None:
                    handle = handle._replace(implementation=entry.implementation)
            else:
                handle = self._submit(step)
                self.ledger.transition(
                    step.name,
                    StepStatus.SUBMITTED,
                    tx_hash=handle.tx_hash,
                    implementation=handle.implementation,
                )
            step.handle = handle
            step.status = StepStatus.SUBMITTED
            self._confirm(step, handle)
        except DeploymentRuntimeError as error:
            error = _for_step(error, step.name)
            self._fail(step, error)
            raise error
        except (AssertionError, DeploymentConfigError):
            raise
        except Exception as error:
            # the network layer failed outside its own error contract
            reason = f"{type(error).__name__}: {error}"
            if step.status == StepStatus.SUBMITTED:
                failure = ConfirmationFailedError(step.name, reason)
            else:
                failure = SubmissionError(step.name, reason)
            self._fail(step, failure)
            raise failure from error
        finally:
            self.ledger.release(step.name)

    def _reuse(self, step: DeploymentStep, entry: LedgerRecord) -> None:
        step.status = StepStatus.CONFIRMED
        step.address = entry.address
        step.implementation = entry.implementation
        print(f"(i) {step.name} already confirmed at {entry.address}; skipping.")

    def _library_artifact(self, name: str) -> str:
        component = self._components.get(name)
        return component.artifact if component else name

    def _resolve_links(self, step: DeploymentStep) -> Dict[str, ChecksumAddress]:
        # every dependency must be confirmed; ordering guarantees it
        for name in step.dependencies:
            self.ledger.confirmed_address(name)

        links = OrderedDict()
        for library in step.component.libraries:
            links[self._library_artifact(library)] = self.ledger.confirmed_address(library)
        return links

    def _submit(self, step: DeploymentStep) -> PendingHandle:
        step.link_addresses = self._resolve_links(step)
        context = ResolutionContext(ledger=self.ledger, deployer=self.deployer)
        step.arguments = resolve_params(step.component.arguments, context)
        artifact = self._artifacts[step.name]
        args = list(step.arguments.values())

        attempts = self.options.submission_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                if step.component.proxied:
                    print(f"\n(i) Deploying {step.name} behind a proxy...")
                    return self.network.submit_proxied_deployment(
                        artifact, args, step.link_addresses, step.component.initializer
                    )
                print(f"\n(i) Deploying {step.name}...")
                return self.network.submit_deployment(artifact, args, step.link_addresses)
            except SubmissionError as error:
                if attempt == attempts:
                    raise
                print(f"(!) Submission of {step.name} failed ({error.reason}); "
                      f"retrying ({attempt}/{self.options.submission_retries})")

    def _confirm(self, step: DeploymentStep, handle: PendingHandle) -> None:
        print(f"(i) Awaiting confirmation of {step.name} ({handle.tx_hash})...")
        confirmation = self.network.await_confirmation(
            handle, timeout=self.options.confirmation_timeout
        )
        if not confirmation.success:
            raise ConfirmationFailedError(step.name, confirmation.error or "transaction failed")
        if not confirmation.address:
            raise ConfirmationFailedError(step.name, "no contract address in receipt")

        record = self.ledger.transition(
            step.name,
            StepStatus.CONFIRMED,
            address=confirmation.address,
            block_number=confirmation.block_number,
            implementation=confirmation.implementation or handle.implementation,
        )
        step.status = StepStatus.CONFIRMED
        step.address = record.address
        step.implementation = record.implementation
        print(f"(i) {step.name} confirmed at {record.address}")

    def _fail(self, step: DeploymentStep, error: DeploymentRuntimeError) -> None:
        step.status = StepStatus.FAILED
        step.error = error.reason
        self.ledger.transition(step.name, StepStatus.FAILED, error=error.reason)
        print(f"(!) {step.name} failed: {error.reason}")
