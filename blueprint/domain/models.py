# Copyright 2026 Pramod Kumar Voola
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

# -----------------------------------------------------------------------------
# DOMAIN MODELS - TEMPLATES, LOCATORS, RUNS
# -----------------------------------------------------------------------------
# These Pydantic models define the template document submitted by users and
# the run record tracked while the template is rendered.
#
# Templates are validated at the gate: a malformed document never reaches
# the renderer.
# -----------------------------------------------------------------------------

from datetime import datetime, timezone
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PositiveInt


class BlendMode(str, Enum):
    """
    How a layer is blended onto the layers below it.

    Only NORMAL (alpha-over) changes the compositing math. MULTIPLY and
    OVERLAY are accepted so stored templates stay valid, and are painted
    as NORMAL.
    """

    NORMAL = "normal"
    MULTIPLY = "multiply"
    OVERLAY = "overlay"

    @classmethod
    def _missing_(cls, value):
        # Stored templates use "Normal", "Multiply", "Overlay"
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


# Largest accepted scale factor; larger layers could not be allocated
MAX_SCALE = 64.0


class Transform(BaseModel):
    """
    Affine placement of a layer on the canvas.

    Fields:
    - offset: (x, y) pixel offset from the canvas center
    - scale: uniform scale factor, 1.0 means unscaled
    - rotate: rotation in degrees, clockwise
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    offset: tuple[int, int] = Field((0, 0), description="(x, y) offset in pixels")
    scale: float = Field(
        1.0, gt=0, le=MAX_SCALE, allow_inf_nan=False, description="Uniform scale factor"
    )
    rotate: float = Field(
        0.0,
        allow_inf_nan=False,
        validation_alias=AliasChoices("rotate", "rotate_degrees"),
        description="Rotation in degrees, clockwise",
    )


class Layer(BaseModel):
    """A single raster layer: an alias reference plus how to paint it."""

    model_config = ConfigDict(populate_by_name=True)

    reference: str = Field(..., alias="ref", min_length=1, description="Alias name")
    transform: Transform = Field(default_factory=Transform)
    blend_mode: BlendMode = BlendMode.NORMAL
    opacity: float = Field(1.0, ge=0.0, le=1.0)


class Template(BaseModel):
    """
    The template document.

    aliases maps an alias name to one or more references. Each reference
    is either an asset id, "pack:<pack_id>" or "<pack_id>:<glob>". Every
    combination of resolved aliases is rendered as its own output image.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    aliases: dict[str, list[str]] = Field(..., description="Alias name -> references")
    layers: list[Layer] = Field(..., min_length=1, description="Layers, bottom first")
    canvas_size: tuple[PositiveInt, PositiveInt] = Field(..., description="(width, height)")


class AssetLocator(BaseModel):
    """
    Concrete address of one asset.

    pack_id is None for assets stored in the shared asset namespace.
    Frozen so it can key the image cache.
    """

    model_config = ConfigDict(frozen=True)

    pack_id: str | None = None
    path: str = Field(..., min_length=1)

    def __str__(self) -> str:
        if self.pack_id is None:
            return self.path
        return f"{self.pack_id}/{self.path}"


# One concrete assignment of every alias, i.e. one rendered instance.
Binding = dict[str, AssetLocator]


class RunStatus(str, Enum):
    """Lifecycle of a run: pending -> running -> succeeded | failed."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Run(BaseModel):
    """A run record: one template submission and its progress."""

    id: str
    status: RunStatus = RunStatus.PENDING
    progress: int = Field(0, ge=0, le=100)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime | None = None
