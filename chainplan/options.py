from pathlib import Path

import click

from chainplan.constants import CONSTRUCTOR_PARAMS_DIR
from chainplan.types import MinInt

params_option = click.option(
    "--params",
    "-p",
    "params_filepath",
    help=f"Deployment params YAML; relative names are looked up in {CONSTRUCTOR_PARAMS_DIR}",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
)

ledger_option = click.option(
    "--ledger",
    "-l",
    "ledger_filepath",
    help="Ledger file to resume from and append to; defaults to the params file setting",
    type=click.Path(dir_okay=False, path_type=Path),
    required=False,
)

autosign_option = click.option(
    "--autosign",
    help="Sign every transaction without asking for confirmation",
    is_flag=True,
    default=False,
)

verify_option = click.option(
    "--verify",
    help="Publish the deployed contracts to the block explorer",
    is_flag=True,
    default=False,
)

workers_option = click.option(
    "--workers",
    "-w",
    help="Number of independent components that may be deployed concurrently",
    type=MinInt(1),
    required=False,
)

skip_wiring_option = click.option(
    "--skip-wiring",
    help="Deploy components only; do not issue wiring calls",
    is_flag=True,
    default=False,
)

build_dir_option = click.option(
    "--build-dir",
    "build_dir",
    help="Directory of compiled <name>.json artifacts to check the plan against",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=False,
)


def resolve_params_filepath(params_filepath: Path) -> Path:
    if params_filepath.exists():
        return params_filepath
    candidate = CONSTRUCTOR_PARAMS_DIR / params_filepath
    if candidate.exists():
        return candidate
    raise click.BadParameter(f"No params file found at {params_filepath}", param_hint="--params")
