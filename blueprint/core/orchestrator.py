# -----------------------------------------------------------------------------
# THE RUN ORCHESTRATOR
# -----------------------------------------------------------------------------
# Orchestrates one template submission end to end.
#
# Pipeline: Pending -> Resolve -> Enumerate -> [Composite -> Encode -> Store
#           -> Progress] per instance -> Succeeded | Failed
#
# Functions:
# - submit: Create the pending run record
# - run_template: Main orchestration (never raises, returns a RunSummary)
# - _phase_resolve: Expand references, enumerate bindings
# - _phase_render: Render, persist and report every instance
# - _finalize / _fail: Terminal status
#
# The orchestrator is the only writer of the run record it drives.
# Outputs already stored are kept when a run fails.
# -----------------------------------------------------------------------------

import asyncio
import os
import traceback
from dataclasses import dataclass, field

from rich.console import Console

from blueprint.core.bindings import (
    BindingSet,
    OutputNamer,
    PrimaryAliasNamer,
    deduplicate_name,
    enumerate_bindings,
)
from blueprint.core.cache import POOL_SIZE, ImageCache, LoadError
from blueprint.core.compositor import CompositeError, composite, encode_png
from blueprint.core.db import RunRepository
from blueprint.core.resolver import BlueprintReferenceError, ReferenceResolver
from blueprint.domain.models import Binding, RunStatus, Template
from blueprint.infra.storage import AssetStore, OutputStore, StorageError

console = Console()

# Log and skip instances that fail to render instead of failing the run
SKIP_FAILED_INSTANCES = os.getenv("BLUEPRINT_SKIP_FAILED_INSTANCES", "").lower() == "true"


def progress_for(done: int, total: int) -> int:
    """
    Percentage reported after `done` of `total` instances.

    Stays below 100 until the run is finished; 100 is reserved for the
    terminal update.
    """
    if total <= 0 or done >= total:
        return 100
    return min(99, round(done * 100 / total))


@dataclass
class RunSummary:
    """Outcome of one run, returned to the dispatcher/CLI."""

    run_id: str
    status: RunStatus = RunStatus.PENDING
    total: int = 0
    rendered: int = 0
    skipped: int = 0
    progress: int = 0
    outputs: list[str] = field(default_factory=list)
    error: str | None = None


class RunOrchestrator:
    """
    The Run Orchestrator.

    Every collaborator is injected; a fresh ImageCache is built per run so
    cache lifetime matches run lifetime.
    """

    def __init__(
        self,
        asset_store: AssetStore,
        output_store: OutputStore,
        runs: RunRepository,
        namer: OutputNamer | None = None,
        resolver: ReferenceResolver | None = None,
        cache_size: int = POOL_SIZE,
        skip_failed_instances: bool = SKIP_FAILED_INSTANCES,
    ) -> None:
        self._asset_store = asset_store
        self._output_store = output_store
        self._runs = runs
        self._namer = namer or PrimaryAliasNamer(asset_store)
        self._resolver = resolver or ReferenceResolver(asset_store)
        self._cache_size = cache_size
        self._skip_failed_instances = skip_failed_instances

    async def _update_status(
        self, summary: RunSummary, status: RunStatus, progress: int
    ) -> None:
        """Persist status/progress and mirror it on the summary."""
        await self._runs.update_status(summary.run_id, status, progress)
        summary.status = status
        summary.progress = progress

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def submit(self, template: Template) -> str:
        """
        Create the pending run record for a template.

        Returns:
            The new run id. Rendering is started separately (run_template).
        """
        run = await self._runs.create()
        console.print(
            f"[cyan][ORCHESTRATOR] Run queued: {run.id[:8]} "
            f"({len(template.aliases)} aliases, {len(template.layers)} layers)[/cyan]"
        )
        return run.id

    async def run_template(self, run_id: str, template: Template) -> RunSummary:
        """
        Execute a run.

        Flow: Resolve -> Render every instance -> Succeeded
        Any unrecoverable error marks the run Failed; it is logged, recorded
        on the summary, and not re-raised. Cancellation also marks the run
        Failed, then propagates.
        """
        summary = RunSummary(run_id=run_id)
        try:
            bindings = await self._phase_resolve(summary, template)
            await self._phase_render(summary, template, bindings)
            await self._finalize(summary)

        except (BlueprintReferenceError, CompositeError, LoadError, StorageError) as e:
            console.print(
                f"[red][Run {run_id[:8]}] {type(e).__name__}: {e}[/red]"
            )
            await self._fail(summary, e)

        except asyncio.CancelledError as e:
            # Worker shutdown: the run must not be left running
            console.print(f"[yellow][Run {run_id[:8]}] Interrupted by shutdown[/yellow]")
            await self._fail(summary, e)
            raise

        except Exception as e:
            console.print(f"[red][Run {run_id[:8]}] Critical error: {e}[/red]")
            console.print(f"[dim]{traceback.format_exc()}[/dim]")
            await self._fail(summary, e)

        return summary

    # =========================================================================
    # PHASE 1: RESOLUTION
    # =========================================================================

    async def _phase_resolve(self, summary: RunSummary, template: Template) -> BindingSet:
        """Expand every alias and enumerate the instances."""
        run_id = summary.run_id
        await self._update_status(summary, RunStatus.RUNNING, 0)
        console.print(f"[cyan][Run {run_id[:8]}] Resolving references...[/cyan]")

        resolved = await self._resolver.resolve_aliases(template.aliases)
        bindings = enumerate_bindings(resolved)
        summary.total = len(bindings)

        empty = [alias for alias, locators in resolved.items() if not locators]
        if empty:
            console.print(
                f"[yellow][Run {run_id[:8]}] Aliases with no matching assets: "
                f"{', '.join(empty)}. Nothing to render.[/yellow]"
            )
        else:
            counts = ", ".join(f"{alias}={len(locators)}" for alias, locators in resolved.items())
            console.print(
                f"[green][Run {run_id[:8]}] {summary.total} instance(s) ({counts})[/green]"
            )
        return bindings

    # =========================================================================
    # PHASE 2: RENDERING
    # =========================================================================

    async def _phase_render(
        self, summary: RunSummary, template: Template, bindings: BindingSet
    ) -> None:
        """Render, store and report every instance in enumeration order."""
        run_id = summary.run_id
        cache = ImageCache(self._asset_store.get, capacity=self._cache_size)
        taken: set[str] = set()

        for index, binding in enumerate(bindings, start=1):
            console.print(f"[cyan][Run {run_id[:8]}] Rendering {index}/{summary.total}[/cyan]")
            try:
                name = await self._render_instance(summary, template, binding, index, cache, taken)
            except (CompositeError, LoadError) as e:
                if not self._skip_failed_instances:
                    raise
                summary.skipped += 1
                console.print(
                    f"[yellow][Run {run_id[:8]}] Instance {index} skipped: {e}[/yellow]"
                )
            else:
                summary.outputs.append(name)
                summary.rendered += 1

            # The last instance is reported by the terminal update
            if index < summary.total:
                await self._update_status(
                    summary, RunStatus.RUNNING, progress_for(index, summary.total)
                )

        stats = cache.stats
        console.print(
            f"[dim][Run {run_id[:8]}] Cache: {stats.loads} loads, {stats.hits} hits, "
            f"{stats.evictions} evictions[/dim]"
        )

    async def _render_instance(
        self,
        summary: RunSummary,
        template: Template,
        binding: Binding,
        index: int,
        cache: ImageCache,
        taken: set[str],
    ) -> str:
        """Composite one binding and persist it. Returns the stored file name."""
        image = await composite(template, binding, cache)
        data = await asyncio.to_thread(encode_png, image)

        name = deduplicate_name(await self._namer.name(binding, index), taken)
        await self._output_store.put(summary.run_id, name, data)
        return name

    # =========================================================================
    # FINALIZATION
    # =========================================================================

    async def _finalize(self, summary: RunSummary) -> None:
        """Mark the run succeeded."""
        await self._update_status(summary, RunStatus.SUCCEEDED, 100)
        run_id = summary.run_id
        if summary.skipped:
            console.print(
                f"[yellow][Run {run_id[:8]}] COMPLETE with {summary.skipped} skipped "
                f"({summary.rendered}/{summary.total} rendered)[/yellow]"
            )
        else:
            console.print(
                f"[green][Run {run_id[:8]}] COMPLETE ({summary.rendered} rendered)[/green]"
            )

    async def _fail(self, summary: RunSummary, error: Exception) -> None:
        """Mark the run failed, keeping its last progress."""
        summary.error = str(error) or type(error).__name__
        summary.status = RunStatus.FAILED
        try:
            await self._runs.update_status(summary.run_id, RunStatus.FAILED, summary.progress)
        except Exception as e:
            console.print(
                f"[red][Run {summary.run_id[:8]}] Could not record failure: {e}[/red]"
            )
