# -----------------------------------------------------------------------------
# BLUEPRINT - FASTAPI INTERFACE
# -----------------------------------------------------------------------------
# Async API in front of the template workers. Submitting a template returns
# immediately with a run id; rendering happens in the background.
#
# Endpoints:
# - GET  /health              : Health check
# - POST /v1/templates/run    : Submit a template, returns run id (202)
# - GET  /v1/runs             : Recent runs
# - GET  /v1/runs/{run_id}    : Run status and progress
# -----------------------------------------------------------------------------

import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, status
from pydantic import BaseModel
from rich.console import Console
from rich.panel import Panel

PROJECT_ROOT = Path(__file__).parent.parent

# Load environment variables before the modules below read them
load_dotenv(PROJECT_ROOT / ".env")

from blueprint.core.bindings import PrimaryAliasNamer
from blueprint.core.db import (
    InMemoryRunRepository,
    PostgresRunRepository,
    RunRepository,
    close_pool,
)
from blueprint.core.dispatcher import JobDispatcher, QueueFull
from blueprint.core.orchestrator import RunOrchestrator
from blueprint.domain.models import Run, RunStatus, Template
from blueprint.infra.blob_client import BlobClient
from blueprint.infra.storage import (
    AssetStore,
    BlobAssetStore,
    BlobOutputStore,
    LocalAssetStore,
    LocalOutputStore,
    OutputStore,
)

console = Console()

VERSION = "1.0.0"

# Storage backends: "local" (filesystem) or "blob" (Azure Blob Storage)
STORAGE_BACKEND = os.getenv("BLUEPRINT_STORAGE", "local").lower()
ASSET_ROOT = Path(os.getenv("BLUEPRINT_ASSET_ROOT", str(PROJECT_ROOT / "data" / "assets")))
OUTPUT_ROOT = Path(os.getenv("BLUEPRINT_OUTPUT_ROOT", str(PROJECT_ROOT / "data" / "output")))

# Run records: "memory" or "postgres"
RUN_STORE = os.getenv("BLUEPRINT_RUN_STORE", "memory").lower()


def build_stores() -> tuple[AssetStore, OutputStore]:
    """Create the asset/output stores selected by BLUEPRINT_STORAGE."""
    if STORAGE_BACKEND == "blob":
        client = BlobClient(
            account=os.getenv("AZURE_STORAGE_ACCOUNT", ""),
            sas_token=os.getenv("AZURE_STORAGE_SAS_TOKEN", ""),
            endpoint=os.getenv("AZURE_STORAGE_ENDPOINT") or None,
        )
        return BlobAssetStore(client), BlobOutputStore(client)
    if STORAGE_BACKEND != "local":
        raise ValueError(f"Unknown BLUEPRINT_STORAGE: {STORAGE_BACKEND}")
    return LocalAssetStore(ASSET_ROOT), LocalOutputStore(OUTPUT_ROOT)


def build_run_repository() -> RunRepository:
    """Create the run repository selected by BLUEPRINT_RUN_STORE."""
    if RUN_STORE == "postgres":
        return PostgresRunRepository()
    if RUN_STORE != "memory":
        raise ValueError(f"Unknown BLUEPRINT_RUN_STORE: {RUN_STORE}")
    return InMemoryRunRepository()


# Singletons (lazy init)
_runs: RunRepository | None = None
_dispatcher: JobDispatcher | None = None


def get_runs() -> RunRepository:
    global _runs
    if _runs is None:
        _runs = build_run_repository()
    return _runs


def get_dispatcher() -> JobDispatcher:
    global _dispatcher
    if _dispatcher is None:
        asset_store, output_store = build_stores()
        orchestrator = RunOrchestrator(
            asset_store,
            output_store,
            get_runs(),
            namer=PrimaryAliasNamer(asset_store),
        )
        _dispatcher = JobDispatcher(orchestrator)
    return _dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    print_banner()
    get_dispatcher().start()
    console.print("[green]BLUEPRINT ONLINE[/green]")

    yield

    # Shutdown
    console.print("[yellow]BLUEPRINT SHUTTING DOWN[/yellow]")
    await get_dispatcher().stop()
    if RUN_STORE == "postgres":
        close_pool()


app = FastAPI(
    title="Blueprint",
    description="Template compositor - renders layered image templates in batches",
    version=VERSION,
    lifespan=lifespan,
)


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================


class SubmitResponse(BaseModel):
    run_id: str
    status: RunStatus


class RunList(BaseModel):
    count: int
    runs: list[Run]


# =============================================================================
# ENDPOINTS
# =============================================================================


@app.get("/health")
async def health_check():
    """Health check for load balancers."""
    dispatcher = get_dispatcher()
    return {
        "status": "online",
        "service": "blueprint",
        "version": VERSION,
        "workers": dispatcher.running,
        "queued": dispatcher.pending,
    }


@app.post(
    "/v1/templates/run",
    response_model=SubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def run_template(
    template: Template,
    dispatcher: Annotated[JobDispatcher, Depends(get_dispatcher)],
):
    """Queue a template run."""
    try:
        run_id = await dispatcher.submit(template)
    except QueueFull as e:
        console.print(f"[yellow][API] Submission rejected: {e}[/yellow]")
        raise HTTPException(status_code=503, detail="Render queue is full. Retry later.")

    return SubmitResponse(run_id=run_id, status=RunStatus.PENDING)


@app.get("/v1/runs", response_model=RunList)
async def list_all_runs(
    runs: Annotated[RunRepository, Depends(get_runs)],
    limit: Annotated[int, Query(ge=1, le=200)] = 20,
):
    """List recent runs."""
    recent = await runs.list_runs(limit=limit)
    return RunList(count=len(recent), runs=recent)


@app.get("/v1/runs/{run_id}", response_model=Run)
async def get_run(
    run_id: str,
    runs: Annotated[RunRepository, Depends(get_runs)],
):
    """Get run status and progress."""
    run = await runs.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


# =============================================================================
# BANNER
# =============================================================================


def print_banner() -> None:
    """Print the startup banner."""
    dispatcher = get_dispatcher()
    console.print(
        Panel(
            f"[bold]BLUEPRINT v{VERSION}[/bold]\n"
            f"• Storage: {STORAGE_BACKEND}\n"
            f"• Run store: {RUN_STORE}\n"
            f"• Template workers: {dispatcher._num_workers}",
            border_style="cyan",
        )
    )


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("BLUEPRINT_PORT", "8080"))
    uvicorn.run(app, host="0.0.0.0", port=port)
