#!/usr/bin/python3
import click

from chainplan.artifacts import BuildDirectoryResolver
from chainplan.config import DeploymentConfig
from chainplan.errors import DeploymentConfigError
from chainplan.graph import build
from chainplan.ledger import DeploymentLedger
from chainplan.options import build_dir_option, ledger_option, params_option, resolve_params_filepath
from chainplan.orchestrator import preflight


@click.command()
@params_option
@ledger_option
@build_dir_option
def cli(params_filepath, ledger_filepath, build_dir):
    """Show the deployment order of a params file without touching the network."""
    config = DeploymentConfig.from_yaml(resolve_params_filepath(params_filepath))
    steps = build(config.components, config.wiring)
    ledger = DeploymentLedger.load(ledger_filepath or config.ledger_filepath)

    artifacts = dict()
    if build_dir:
        try:
            artifacts = preflight(steps, BuildDirectoryResolver(build_dir), config.options)
        except DeploymentConfigError as e:
            raise click.ClickException(str(e)) from e

    click.secho(f"\n{config.name} (chain {config.chain_id})", fg="green")
    for index, step in enumerate(steps, start=1):
        component = step.component
        status = ledger.status(step.name)
        click.secho(f"    {index}. {step.name} [{component.kind.value}] {status.value}", fg="cyan")
        if step.name in artifacts:
            click.echo(f"        artifact: {artifacts[step.name].source}")
        if component.libraries:
            click.echo(f"        links: {', '.join(component.libraries)}")
        for name, value in component.arguments.items():
            click.echo(f"        {name}={value}")

    if config.wiring:
        click.secho("\nWiring", fg="green")
        for index, edge in enumerate(config.wiring, start=1):
            click.secho(f"    {index}. {edge}", fg="cyan")


if __name__ == "__main__":
    cli()
