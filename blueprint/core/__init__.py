# -----------------------------------------------------------------------------
# CORE LAYER
# -----------------------------------------------------------------------------
# The rendering engine:
# - ReferenceResolver: references -> asset locators
# - enumerate_bindings: Cartesian product of alias candidates
# - ImageCache: single-flight LRU of decoded rasters (one per run)
# - composite: renders one binding of a template
# - RunOrchestrator: drives one run end to end
# - JobDispatcher: worker pool consuming queued runs
# - DB: run repositories (PostgreSQL / in-memory)
# -----------------------------------------------------------------------------

from .bindings import BindingSet, OutputNamer, PrimaryAliasNamer, enumerate_bindings
from .cache import ImageCache, LoadError
from .compositor import CompositeError, UnboundReference, composite, encode_png
from .db import InMemoryRunRepository, PostgresRunRepository, RunRepository, RunStoreError
from .dispatcher import JobDispatcher, QueueFull
from .orchestrator import RunOrchestrator, RunSummary
from .resolver import (
    BlueprintReferenceError,
    CatalogUnavailable,
    InvalidGlob,
    ReferenceResolver,
    UnknownReferenceKind,
)

__all__ = [
    "BindingSet", "OutputNamer", "PrimaryAliasNamer", "enumerate_bindings",
    "ImageCache", "LoadError",
    "CompositeError", "UnboundReference", "composite", "encode_png",
    "InMemoryRunRepository", "PostgresRunRepository", "RunRepository", "RunStoreError",
    "JobDispatcher", "QueueFull",
    "RunOrchestrator", "RunSummary",
    "BlueprintReferenceError", "CatalogUnavailable", "InvalidGlob",
    "ReferenceResolver", "UnknownReferenceKind",
]
