#!/usr/bin/python3
import sys
from typing import List

import click
from ape import networks
from ape.cli import ConnectedProviderCommand, account_option, network_option

from chainplan.ape_network import ApeNetwork, ProjectArtifactResolver
from chainplan.artifacts import ArtifactResolver
from chainplan.components import DeploymentStep
from chainplan.config import DeploymentConfig, OrchestrationOptions
from chainplan.confirm import _continue
from chainplan.errors import DeploymentRuntimeError, RunCancelled, WiringError
from chainplan.graph import build
from chainplan.ledger import DeploymentLedger
from chainplan.network import NetworkLayer
from chainplan.options import (
    autosign_option,
    ledger_option,
    params_option,
    resolve_params_filepath,
    skip_wiring_option,
    verify_option,
    workers_option,
)
from chainplan.orchestrator import Orchestrator
from chainplan.registry import registry_from_ledger
from chainplan.report import DeploymentReport
from chainplan.utils import check_chain_id, check_plugins, verify_contracts
from chainplan.wiring import WiringPhase


def _print_deployment_info(account, config, ledger, verify):
    print(
        f"Account: {account.address}",
        f"Config: {config.path}",
        f"Ledger: {ledger.filepath} ({len(ledger)} entries)",
        f"Registry: {config.registry_filepath}",
        f"Verify: {verify}",
        f"Ecosystem: {networks.provider.network.ecosystem.name}",
        f"Network: {networks.provider.network.name}",
        f"Chain ID: {networks.provider.network.chain_id}",
        f"Gas Price: {networks.provider.gas_price}",
        sep="\n",
    )


def deploy(
    config: DeploymentConfig,
    steps: List[DeploymentStep],
    ledger: DeploymentLedger,
    network: NetworkLayer,
    resolver: ArtifactResolver,
    options: OrchestrationOptions,
    chain_id: int,
    deployer: str,
    skip_wiring: bool = False,
    verify: bool = False,
) -> DeploymentReport:
    """Runs the deployment and wiring phases and exports the registry on success."""
    orchestrator = Orchestrator(
        network=network,
        resolver=resolver,
        ledger=ledger,
        options=options,
        deployer=deployer,
    )

    wiring_results, error = list(), None
    try:
        orchestrator.run(steps)
        if config.wiring and not skip_wiring:
            wiring_results = WiringPhase(network, options).apply(config.wiring, ledger)
    except WiringError as e:
        error, wiring_results = e, e.results
    except DeploymentRuntimeError as e:
        error = e
    except KeyboardInterrupt:
        orchestrator.cancel()
        error = RunCancelled("run", "interrupted; submitted transactions are kept in the ledger")

    # skipped wiring still counts against the exit code
    report = DeploymentReport(
        steps=steps,
        ledger=ledger,
        wiring_edges=config.wiring,
        wiring_results=wiring_results,
        error=error,
    )
    if report.succeeded:
        registry_from_ledger(
            ledger=ledger,
            artifacts=orchestrator.artifacts,
            chain_id=chain_id,
            deployer=deployer,
            output_filepath=config.registry_filepath,
        )
        if verify:
            verify_contracts([record.address for record in ledger.confirmed()])
    return report


@click.command(cls=ConnectedProviderCommand)
@network_option(required=True)
@account_option()
@params_option
@ledger_option
@autosign_option
@verify_option
@workers_option
@skip_wiring_option
def cli(network, account, params_filepath, ledger_filepath, autosign, verify, workers, skip_wiring):
    """Deploy and wire the components of a params file in dependency order."""
    config = DeploymentConfig.from_yaml(resolve_params_filepath(params_filepath))
    options = config.options
    if workers:
        options = options._replace(workers=workers)

    # configuration errors surface here, before anything is submitted
    check_plugins(verify=verify)
    check_chain_id(config)
    steps = build(config.components, config.wiring)
    ledger = DeploymentLedger.load(ledger_filepath or config.ledger_filepath)

    transactor = ApeNetwork(account=account, autosign=autosign)
    _print_deployment_info(transactor.get_account(), config, ledger, verify)
    if not autosign:
        _continue()

    report = deploy(
        config=config,
        steps=steps,
        ledger=ledger,
        network=transactor,
        resolver=ProjectArtifactResolver(),
        options=options,
        chain_id=networks.provider.network.chain_id,
        deployer=transactor.deployer,
        skip_wiring=skip_wiring,
        verify=verify,
    )
    report.render()
    sys.exit(report.exit_code)


if __name__ == "__main__":
    cli()
