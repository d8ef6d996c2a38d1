# -----------------------------------------------------------------------------
# DOMAIN LAYER
# -----------------------------------------------------------------------------
# Contains the template document and run record (Pydantic models) shared by
# the resolver, compositor, orchestrator and API.
# -----------------------------------------------------------------------------

from .models import (
    AssetLocator,
    Binding,
    BlendMode,
    Layer,
    Run,
    RunStatus,
    Template,
    Transform,
)

__all__ = [
    "AssetLocator",
    "Binding",
    "BlendMode",
    "Layer",
    "Run",
    "RunStatus",
    "Template",
    "Transform",
]
