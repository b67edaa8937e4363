"""Rich terminal renderer for rollout results and ledger history.

Color scheme
------------
- green   : stable
- red     : failed
- yellow  : timed_out, and in-flight states
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from rollforge.models.deployment import RolloutResult, RolloutState

if TYPE_CHECKING:
    from rollforge.core.run_ledger import RunLedger
    from rollforge.models.ledger import LedgerEntry


_STATE_STYLES: dict[RolloutState, str] = {
    RolloutState.STABLE: "bold green",
    RolloutState.FAILED: "bold red",
    RolloutState.TIMED_OUT: "bold yellow",
    RolloutState.INITIATED: "dim",
    RolloutState.AWAITING_DIGEST: "yellow",
    RolloutState.DEFINITION_REGISTERED: "yellow",
    RolloutState.SERVICE_UPDATING: "yellow",
}


def _styled(state: RolloutState) -> str:
    style = _STATE_STYLES.get(state, "")
    return f"[{style}]{state.value}[/{style}]" if style else state.value


class RolloutRenderer:
    """Renders rollout results and ledger entries as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Single result
    # ------------------------------------------------------------------

    def render_result(self, result: RolloutResult) -> Panel:
        lines: list[str] = [
            f"[bold]Run:[/bold]         {result.run_id}",
            f"[bold]Environment:[/bold] {result.environment}",
            f"[bold]State:[/bold]       {_styled(result.state)}",
        ]
        if result.artifact is not None:
            lines.append(f"[bold]Tag:[/bold]         {result.artifact.tagged_reference}")
            if result.artifact.digest:
                lines.append(f"[bold]Digest:[/bold]      {result.artifact.digest}")
        if result.revision is not None:
            lines.append(
                f"[bold]Revision:[/bold]    {result.revision.family}:"
                f"{result.revision.revision_number}"
            )
            lines.append(f"[bold]Identifier:[/bold]  {result.revision.identifier}")
        if result.deployment is not None:
            d = result.deployment
            lines.append(
                f"[bold]Service:[/bold]     {d.cluster}/{d.service} "
                f"({d.running_count}/{d.desired_count} running, {d.status.value})"
            )
        body: list = [Text.from_markup("\n".join(lines))]
        if result.error_message:
            body += [Text(""), Text.from_markup(f"[red]{result.error_type}:[/red] "), Text(result.error_message)]

        border = "green" if result.succeeded else (
            "yellow" if result.state == RolloutState.TIMED_OUT else "red"
        )
        return Panel(
            Group(*body),
            title="[bold]Rollout[/bold]",
            subtitle=f"exit code {result.exit_code}",
            border_style=border,
            padding=(1, 2),
        )

    def print_result(self, result: RolloutResult) -> None:
        self.console.print(self.render_result(result))

    # ------------------------------------------------------------------
    # Ledger views
    # ------------------------------------------------------------------

    def render_run(self, entries: list[LedgerEntry], chain_valid: bool | None = None) -> Table:
        """One row per transition of a single run."""
        title = entries[0].run_id if entries else "run"
        if chain_valid is not None:
            chain = "[green]chain valid[/green]" if chain_valid else "[bold red]chain BROKEN[/bold red]"
            title = f"{title}  ({chain})"
        table = Table(title=title, header_style="bold cyan", expand=True)
        table.add_column("Time (UTC)", style="dim", no_wrap=True)
        table.add_column("Transition", min_width=30)
        table.add_column("Details")

        for entry in entries:
            details = ", ".join(f"{k}={v}" for k, v in sorted(entry.details.items()))
            table.add_row(
                entry.timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
                entry.state_transition,
                details or "[dim]-[/dim]",
            )
        return table

    def render_history(
        self, ledger: RunLedger, environment: str, limit: int = 20
    ) -> Table:
        """Latest state of the most recent runs for *environment*, newest first."""
        table = Table(
            title=f"Rollouts: {environment}", header_style="bold cyan", expand=True
        )
        table.add_column("Run", no_wrap=True)
        table.add_column("Started (UTC)", style="dim", no_wrap=True)
        table.add_column("State", justify="center")
        table.add_column("Tag")
        table.add_column("Revision")

        for run_id in ledger.get_environment_run_ids(environment, limit=limit):
            entries = ledger.get_run_entries(run_id)
            if not entries:
                continue
            merged: dict = {}
            for entry in entries:
                merged.update(entry.details)
            state = RolloutState(entries[-1].to_state)
            table.add_row(
                run_id,
                entries[0].timestamp_utc.strftime("%Y-%m-%d %H:%M:%S"),
                _styled(state),
                str(merged.get("tag", "-")),
                str(merged.get("identifier", "-")),
            )
        return table
