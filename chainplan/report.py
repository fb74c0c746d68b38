from typing import List, NamedTuple, Optional, Sequence

import click

from chainplan.components import DeploymentStep, WiringEdge
from chainplan.constants import StepStatus, WiringStatus
from chainplan.ledger import DeploymentLedger
from chainplan.wiring import WiringResult

STATUS_COLORS = {
    StepStatus.CONFIRMED: "green",
    StepStatus.SUBMITTED: "yellow",
    StepStatus.PENDING: "white",
    StepStatus.FAILED: "red",
    WiringStatus.APPLIED: "green",
    WiringStatus.SKIPPED: "white",
    WiringStatus.FAILED: "red",
}


class ComponentRow(NamedTuple):
    name: str
    status: StepStatus
    address: Optional[str]
    error: Optional[str]


class DeploymentReport:
    """Terminal status of every component and wiring edge of a run."""

    def __init__(
        self,
        steps: Sequence[DeploymentStep],
        ledger: DeploymentLedger,
        wiring_edges: Sequence[WiringEdge] = (),
        wiring_results: Sequence[WiringResult] = (),
        error: Optional[Exception] = None,
    ):
        self.error = error
        self.components: List[ComponentRow] = list()
        for step in steps:
            entry = ledger.get(step.name)
            self.components.append(
                ComponentRow(
                    name=step.name,
                    status=entry.status if entry else StepStatus.PENDING,
                    address=entry.address if entry else None,
                    error=entry.error if entry else None,
                )
            )

        # edges that never ran are reported as skipped
        results = {result.edge: result for result in wiring_results}
        self.wiring: List[WiringResult] = [
            results.get(edge, WiringResult(edge=edge, status=WiringStatus.SKIPPED))
            for edge in wiring_edges
        ]

    @property
    def failures(self) -> List[str]:
        failed = [row.name for row in self.components if row.status == StepStatus.FAILED]
        failed.extend(str(r.edge) for r in self.wiring if r.status == WiringStatus.FAILED)
        return failed

    @property
    def succeeded(self) -> bool:
        components_done = all(row.status == StepStatus.CONFIRMED for row in self.components)
        wiring_done = all(r.status == WiringStatus.APPLIED for r in self.wiring)
        return self.error is None and components_done and wiring_done

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def render(self) -> None:
        click.secho("\nComponents", fg="cyan")
        for index, row in enumerate(self.components, start=1):
            line = f"    {index}. {row.name} {row.status.value}"
            if row.address:
                line += f" {row.address}"
            if row.error:
                line += f" ({row.error})"
            click.secho(line, fg=STATUS_COLORS[row.status])

        if self.wiring:
            click.secho("\nWiring", fg="cyan")
            for index, result in enumerate(self.wiring, start=1):
                line = f"    {index}. {result.edge} {result.status.value}"
                if result.error:
                    line += f" ({result.error})"
                click.secho(line, fg=STATUS_COLORS[result.status])

        if self.succeeded:
            click.secho("\nDeployment complete.", fg="green")
        else:
            failures = ", ".join(self.failures) or "incomplete"
            click.secho(f"\nDeployment failed: {failures}", fg="red", err=True)
            if self.error is not None:
                click.secho(f"    {type(self.error).__name__}: {self.error}", fg="red", err=True)
