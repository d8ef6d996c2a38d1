# -----------------------------------------------------------------------------
# THE ENUMERATOR - ALIAS BINDINGS
# -----------------------------------------------------------------------------
# Responsibility: Turn alias -> [locator, ...] into every possible binding
# (one locator per alias), lazily and in a reproducible order.
#
# Also home of output naming: which file name an instance is stored under.
# Naming is pluggable (OutputNamer) and independent of enumeration.
# -----------------------------------------------------------------------------

import itertools
import math
import os
from collections.abc import Iterator
from pathlib import PurePosixPath
from typing import Protocol

from blueprint.domain.models import AssetLocator, Binding
from blueprint.infra.storage import AssetNotFound, AssetStore

# Alias whose bound asset names each output file
PRIMARY_ALIAS = os.getenv("BLUEPRINT_PRIMARY_ALIAS", "fg")

OUTPUT_SUFFIX = ".png"


class BindingSet:
    """
    The Cartesian product of alias candidates.

    Lazy and restartable: every iteration walks the product from the start,
    holding only the candidate lists. The last alias varies fastest.
    """

    def __init__(self, aliases: dict[str, list[AssetLocator]]) -> None:
        self._names = list(aliases)
        self._candidates = [list(aliases[name]) for name in self._names]

    @property
    def names(self) -> list[str]:
        return list(self._names)

    def cardinality(self, alias: str) -> int:
        """Number of candidates bound to one alias."""
        return len(self._candidates[self._names.index(alias)])

    def __len__(self) -> int:
        return math.prod(len(candidates) for candidates in self._candidates)

    def __iter__(self) -> Iterator[Binding]:
        for combination in itertools.product(*self._candidates):
            yield dict(zip(self._names, combination))


def enumerate_bindings(aliases: dict[str, list[AssetLocator]]) -> BindingSet:
    """Return every binding of the resolved aliases (empty if any list is empty)."""
    return BindingSet(aliases)


class OutputNamer(Protocol):
    """Chooses the file name an instance is persisted under."""

    async def name(self, binding: Binding, index: int) -> str:
        ...


class PrimaryAliasNamer:
    """
    Names outputs after the asset bound to the primary alias.

    Uses the asset's "file_name" metadata when present, otherwise its path,
    always with a .png suffix. Templates without the primary alias get
    sequential instance names.
    """

    def __init__(self, asset_store: AssetStore, alias: str = PRIMARY_ALIAS) -> None:
        self._store = asset_store
        self.alias = alias

    async def name(self, binding: Binding, index: int) -> str:
        locator = binding.get(self.alias)
        if locator is None:
            return f"instance-{index:04d}{OUTPUT_SUFFIX}"

        try:
            metadata = await self._store.metadata(locator)
        except AssetNotFound:
            metadata = {}

        file_name = metadata.get("file_name")
        base = PurePosixPath(file_name).name if file_name else locator.path
        return str(PurePosixPath(base).with_suffix(OUTPUT_SUFFIX))


def deduplicate_name(name: str, taken: set[str]) -> str:
    """Return name, or name-2, name-3, ... if already taken; records the result."""
    candidate = name
    counter = 2
    path = PurePosixPath(name)
    while candidate in taken:
        candidate = str(path.with_name(f"{path.stem}-{counter}{path.suffix}"))
        counter += 1
    taken.add(candidate)
    return candidate
