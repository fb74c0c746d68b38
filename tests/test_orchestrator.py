import threading
from collections import OrderedDict

import pytest

from chainplan.components import Component, ComponentAddress, Constant, DeployerAccount, VariableContext
from chainplan.config import OrchestrationOptions
from chainplan.constants import DeploymentKind, StepStatus
from chainplan.errors import (
    ArtifactNotFoundError,
    ConfirmationFailedError,
    ConfirmationTimeoutError,
    DeploymentConfigError,
    RunCancelled,
    SubmissionError,
    UnsafeLinkingError,
)
from chainplan.graph import build
from chainplan.ledger import DeploymentLedger
from chainplan.orchestrator import Orchestrator
from chainplan.report import DeploymentReport
from tests.conftest import DEPLOYER, FakeNetwork


def _run(network, resolver, ledger, options, components):
    steps = build(components)
    Orchestrator(network, resolver, ledger, options, deployer=DEPLOYER).run(steps)
    return steps


def test_deploys_scenario_in_order(network, resolver, ledger, options, components):
    steps = _run(network, resolver, ledger, options, components)

    assert network.submitted_names == ["Lib", "Token", "Registry", "SaleA"]
    assert [r.name for r in ledger.confirmed()] == ["Lib", "Token", "Registry", "SaleA"]
    assert all(step.status == StepStatus.CONFIRMED for step in steps)

    lib_address = ledger.confirmed_address("Lib")
    registry, sale = network.submissions[2], network.submissions[3]
    assert registry.kind == "direct"
    assert registry.links == {"Lib": lib_address}
    assert sale.kind == "proxied"
    assert sale.initializer == "initialize"
    assert sale.links == {"Lib": lib_address}


def test_proxied_address_of_record_is_the_proxy(network, resolver, ledger, options, components):
    steps = _run(network, resolver, ledger, options, components)
    sale = steps[-1]
    entry = ledger.get("SaleA")
    assert entry.implementation is not None
    assert entry.address != entry.implementation
    assert sale.address == entry.address
    assert sale.implementation == entry.implementation


def test_records_transaction_details(network, resolver, ledger, options, components):
    _run(network, resolver, ledger, options, components)
    statuses = [(r.name, r.status) for r in ledger.records]
    assert statuses[:2] == [("Lib", StepStatus.SUBMITTED), ("Lib", StepStatus.CONFIRMED)]
    confirmed = ledger.get("Token")
    assert confirmed.tx_hash in network.transactions
    assert confirmed.block_number == network.transactions[confirmed.tx_hash].block_number


def test_registry_failure_halts_run(resolver, ledger, options, components, wiring):
    network = FakeNetwork(revert={"Registry"})
    steps = build(components, wiring)
    orchestrator = Orchestrator(network, resolver, ledger, options)

    with pytest.raises(ConfirmationFailedError) as error:
        orchestrator.run(steps)

    assert error.value.component == "Registry"
    assert network.submitted_names == ["Lib", "Token", "Registry"]
    assert ledger.status("Lib") == StepStatus.CONFIRMED
    assert ledger.status("Token") == StepStatus.CONFIRMED
    assert ledger.status("Registry") == StepStatus.FAILED
    assert ledger.status("SaleA") == StepStatus.PENDING
    assert "SaleA" not in ledger

    report = DeploymentReport(steps, ledger, wiring_edges=wiring, error=error.value)
    assert report.exit_code != 0
    assert report.failures == ["Registry"]


@pytest.mark.parametrize("failing", ["Lib", "Token", "Registry", "SaleA"])
def test_fail_fast(resolver, options, components, failing):
    network = FakeNetwork(revert={failing})
    ledger = DeploymentLedger()
    names = ["Lib", "Token", "Registry", "SaleA"]
    k = names.index(failing) + 1

    with pytest.raises(ConfirmationFailedError):
        _run(network, resolver, ledger, options, components)

    assert network.submitted_names == names[:k]
    snapshot = ledger.snapshot()
    assert len(snapshot) == k
    assert [e.status for e in snapshot.values()].count(StepStatus.CONFIRMED) == k - 1
    assert snapshot[failing].status == StepStatus.FAILED


def test_rerun_is_idempotent(network, resolver, ledger, options, components):
    _run(network, resolver, ledger, options, components)
    snapshot, records = ledger.snapshot(), ledger.records
    submissions = len(network.submissions)

    steps = _run(network, resolver, ledger, options, components)

    assert len(network.submissions) == submissions
    assert ledger.snapshot() == snapshot
    assert ledger.records == records
    assert [step.address for step in steps] == [e.address for e in snapshot.values()]


def test_rerun_from_file_is_idempotent(tmp_path, network, resolver, options, components):
    filepath = tmp_path / "sparks.ledger.jsonl"
    _run(network, resolver, DeploymentLedger.load(filepath), options, components)
    content = filepath.read_text()

    ledger = DeploymentLedger.load(filepath)
    _run(network, resolver, ledger, options, components)

    assert network.submitted_names == ["Lib", "Token", "Registry", "SaleA"]
    assert filepath.read_text() == content


def test_resume_after_failure(resolver, ledger, options, components):
    failing = FakeNetwork(revert={"Registry"})
    with pytest.raises(ConfirmationFailedError):
        _run(failing, resolver, ledger, options, components)

    retry = FakeNetwork()
    _run(retry, resolver, ledger, options, components)

    assert retry.submitted_names == ["Registry", "SaleA"]
    assert all(ledger.status(c.name) == StepStatus.CONFIRMED for c in components)
    # the library address from the first run is reused
    assert retry.submissions[0].links == {"Lib": ledger.confirmed_address("Lib")}


def test_resume_awaits_submitted_step(resolver, ledger, options, components):
    network = FakeNetwork(interrupt={"Registry"})
    with pytest.raises(KeyboardInterrupt):
        _run(network, resolver, ledger, options, components)

    entry = ledger.get("Registry")
    assert entry.status == StepStatus.SUBMITTED
    assert entry.tx_hash is not None

    network.interrupt.clear()
    _run(network, resolver, ledger, options, components)

    assert network.recovered == [entry.tx_hash]
    assert network.submitted_names.count("Registry") == 1
    assert ledger.status("Registry") == StepStatus.CONFIRMED
    assert ledger.get("Registry").tx_hash == entry.tx_hash


def test_timeout_is_a_failure(resolver, ledger, options, components):
    network = FakeNetwork(timeout={"Token"})
    with pytest.raises(ConfirmationTimeoutError) as error:
        _run(network, resolver, ledger, options, components)
    assert error.value.component == "Token"
    assert ledger.status("Token") == StepStatus.FAILED
    assert "Registry" not in network.submitted_names


def test_rejected_submission(resolver, ledger, options, components):
    network = FakeNetwork(reject={"Token": 1})
    with pytest.raises(SubmissionError) as error:
        _run(network, resolver, ledger, options, components)
    assert error.value.component == "Token"
    entry = ledger.get("Token")
    assert entry.status == StepStatus.FAILED
    assert entry.tx_hash is None
    assert entry.error == "rejected by node"


def test_bounded_submission_retry(resolver, ledger, components):
    network = FakeNetwork(reject={"Token": 2})
    options = OrchestrationOptions(unsafe_allow_linking=True, submission_retries=2)
    _run(network, resolver, ledger, options, components)
    assert network.submitted_names.count("Token") == 3
    assert ledger.status("Token") == StepStatus.CONFIRMED


def test_missing_artifact_before_any_submission(network, resolver, ledger, options):
    components = [Component("Token"), Component("Unbuilt")]
    with pytest.raises(ArtifactNotFoundError):
        _run(network, resolver, ledger, options, components)
    assert network.submissions == []


def test_unsafe_linking_requires_opt_in(network, resolver, ledger, components):
    with pytest.raises(UnsafeLinkingError):
        _run(network, resolver, ledger, OrchestrationOptions(), components)
    assert network.submissions == []


def test_artifact_libraries_must_be_declared(network, resolver, ledger, options):
    components = [Component("Lib"), Component("Registry")]
    with pytest.raises(DeploymentConfigError, match="Lib"):
        _run(network, resolver, ledger, options, components)
    assert network.submissions == []


def test_arguments_resolve_from_ledger(network, resolver, ledger, options):
    names = ["Token", "Auction"]
    context = VariableContext(
        component_names=names, component_name="Auction", constants={"MIN_BID": 10}
    )
    auction = Component(
        "Auction",
        arguments=OrderedDict(
            token=ComponentAddress("Token", context),
            owner=DeployerAccount(),
            minBid=Constant("MIN_BID", context),
            label="sparks",
        ),
        kind=DeploymentKind.PROXIED,
    )
    _run(network, resolver, ledger, options, [auction, Component("Token")])

    submission = network.submissions[-1]
    assert submission.name == "Auction"
    assert submission.args == [ledger.confirmed_address("Token"), DEPLOYER, 10, "sparks"]


def test_cancel_between_steps(network, resolver, ledger, options, components):
    orchestrator = Orchestrator(network, resolver, ledger, options)

    def cancel_after_token(name):
        if name == "Token":
            orchestrator.cancel()

    network.on_submit = cancel_after_token
    with pytest.raises(RunCancelled) as error:
        orchestrator.run(build(components))

    assert error.value.component == "Registry"
    assert network.submitted_names == ["Lib", "Token"]
    assert ledger.status("Token") == StepStatus.CONFIRMED
    assert "Registry" not in ledger


def test_concurrent_run_respects_dependencies(resolver, ledger, components):
    network = FakeNetwork()
    options = OrchestrationOptions(unsafe_allow_linking=True, workers=3)
    steps = build(components)
    dependencies = {step.name: step.dependencies for step in steps}
    violations = list()
    lock = threading.Lock()

    def check(name):
        with lock:
            for dependency in dependencies[name]:
                if ledger.status(dependency) != StepStatus.CONFIRMED:
                    violations.append((dependency, name))

    network.on_submit = check
    Orchestrator(network, resolver, ledger, options).run(steps)

    assert violations == []
    assert sorted(network.submitted_names) == ["Lib", "Registry", "SaleA", "Token"]
    assert all(ledger.status(step.name) == StepStatus.CONFIRMED for step in steps)


def test_concurrent_run_halts_on_failure(resolver, ledger, components):
    network = FakeNetwork(revert={"Lib"})
    options = OrchestrationOptions(unsafe_allow_linking=True, workers=2)
    with pytest.raises(ConfirmationFailedError) as error:
        Orchestrator(network, resolver, ledger, options).run(build(components))
    assert error.value.component == "Lib"
    assert "Registry" not in network.submitted_names
    assert "SaleA" not in network.submitted_names
    assert ledger.status("Lib") == StepStatus.FAILED


def test_unreachable_provider_fails_the_step(resolver, ledger, options, components):
    network = FakeNetwork(unreachable={"Token"})
    with pytest.raises(ConfirmationFailedError) as error:
        _run(network, resolver, ledger, options, components)

    assert error.value.component == "Token"
    assert isinstance(error.value.__cause__, ConnectionError)
    entry = ledger.get("Token")
    assert entry.status == StepStatus.FAILED
    assert entry.tx_hash is not None
    assert "ConnectionError" in entry.error
    assert "Registry" not in network.submitted_names


def test_unexpected_submission_error_fails_the_step(network, resolver, ledger, options, components):
    def broken_signer(name):
        if name == "Token":
            raise ValueError("nonce too low")

    network.on_submit = broken_signer
    with pytest.raises(SubmissionError) as error:
        _run(network, resolver, ledger, options, components)

    assert error.value.component == "Token"
    assert ledger.status("Token") == StepStatus.FAILED
    assert ledger.get("Token").tx_hash is None


def test_resume_keeps_proxy_implementation(resolver, ledger, options, components):
    network = FakeNetwork(interrupt={"SaleA"})
    with pytest.raises(KeyboardInterrupt):
        _run(network, resolver, ledger, options, components)

    submitted = ledger.get("SaleA")
    assert submitted.status == StepStatus.SUBMITTED
    assert submitted.implementation is not None

    network.interrupt.clear()
    _run(network, resolver, ledger, options, components)

    assert network.recovered == [submitted.tx_hash]
    confirmed = ledger.get("SaleA")
    assert confirmed.status == StepStatus.CONFIRMED
    assert confirmed.implementation == submitted.implementation
    assert confirmed.address != confirmed.implementation


def test_ledgers_sharing_a_file_do_not_redeploy(tmp_path, resolver, options, components):
    filepath = tmp_path / "sparks.ledger.jsonl"
    first = DeploymentLedger.load(filepath)
    second = DeploymentLedger.load(filepath)

    _run(FakeNetwork(), resolver, first, options, components)
    network = FakeNetwork()
    _run(network, resolver, second, options, components)

    assert network.submissions == []
    assert second.snapshot() == first.snapshot()
    restored = DeploymentLedger.load(filepath)
    confirmations = [r.name for r in restored.records if r.status == StepStatus.CONFIRMED]
    assert confirmations == ["Lib", "Token", "Registry", "SaleA"]
