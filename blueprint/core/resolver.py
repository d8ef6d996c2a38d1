# -----------------------------------------------------------------------------
# THE RESOLVER - REFERENCE EXPANSION
# -----------------------------------------------------------------------------
# Responsibility: Expand the symbolic references of a template into concrete
# asset locators, read-only against the asset catalog.
#
# Reference forms:
# - "hero-01"            : one shared asset, returned as-is
# - "pack:<pack_id>"     : every asset of the pack
# - "<pack_id>:<glob>"   : every asset of the pack whose path matches glob
#
# Results keep catalog order so instance numbering is reproducible.
# -----------------------------------------------------------------------------

import asyncio
import fnmatch
import re
from collections.abc import Callable

from rich.console import Console

from blueprint.domain.models import AssetLocator
from blueprint.infra.storage import AssetStore, PackNotFound, StorageError

console = Console()

REFERENCE_DELIMITER = ":"

# Reserved kind: "pack:<pack_id>" selects a whole pack
PACK_KIND = "pack"


class BlueprintReferenceError(Exception):
    """Base class for reference expansion failures."""

    def __init__(self, message: str, reference: str | None = None) -> None:
        super().__init__(message)
        self.reference = reference


class UnknownReferenceKind(BlueprintReferenceError):
    """Raised when the prefix of a reference is neither 'pack' nor a known pack."""

    pass


class InvalidGlob(BlueprintReferenceError):
    """Raised when a glob pattern cannot be compiled."""

    pass


class CatalogUnavailable(BlueprintReferenceError):
    """Raised when the asset catalog cannot be listed."""

    pass


def _expand_braces(pattern: str) -> list[str]:
    """Expand one level of {a,b} alternation into plain patterns."""
    start = pattern.find("{")
    close = pattern.find("}")
    if start == -1:
        if close != -1:
            raise InvalidGlob(f"Unmatched '}}' in glob: {pattern}")
        return [pattern]
    if close != -1 and close < start:
        raise InvalidGlob(f"Unmatched '}}' in glob: {pattern}")

    end = pattern.find("}", start)
    if end == -1:
        raise InvalidGlob(f"Unmatched '{{' in glob: {pattern}")
    body = pattern[start + 1 : end]
    if "{" in body:
        raise InvalidGlob(f"Nested alternation is not supported: {pattern}")

    head, tail = pattern[:start], pattern[end + 1 :]
    return [head + option + rest for option in body.split(",") for rest in _expand_braces(tail)]


def _check_brackets(pattern: str) -> None:
    """Reject character classes that are never closed."""
    i = 0
    while i < len(pattern):
        if pattern[i] != "[":
            i += 1
            continue
        j = i + 1
        if j < len(pattern) and pattern[j] in "!^":
            j += 1
        if j < len(pattern) and pattern[j] == "]":
            j += 1
        while j < len(pattern) and pattern[j] != "]":
            j += 1
        if j >= len(pattern):
            raise InvalidGlob(f"Unclosed '[' in glob: {pattern}")
        i = j + 1


def compile_glob(pattern: str) -> Callable[[str], bool]:
    """
    Compile a glob pattern into a path matcher.

    Supports *, ?, [...], [!...] and {a,b}. '*' also matches '/'.

    Raises:
        InvalidGlob: If the pattern is empty or malformed.
    """
    if not pattern:
        raise InvalidGlob("Glob pattern is empty")

    regexes = []
    for alternative in _expand_braces(pattern):
        _check_brackets(alternative)
        try:
            regexes.append(re.compile(fnmatch.translate(alternative)))
        except re.error as e:
            raise InvalidGlob(f"Invalid glob {pattern!r}: {e}") from e

    def matches(path: str) -> bool:
        return any(regex.match(path) for regex in regexes)

    return matches


class ReferenceResolver:
    """
    Expands references against an AssetStore.

    Idempotent and side-effect free; safe to share between runs.
    """

    def __init__(self, asset_store: AssetStore) -> None:
        self._store = asset_store

    async def _list_pack(self, pack_id: str, reference: str) -> list[str]:
        try:
            return await self._store.list_assets(pack_id)
        except PackNotFound as e:
            raise UnknownReferenceKind(
                f"Unknown reference kind or pack '{pack_id}' in {reference!r}", reference
            ) from e
        except StorageError as e:
            raise CatalogUnavailable(f"Catalog unavailable for {reference!r}: {e}", reference) from e

    async def resolve(self, reference: str) -> list[AssetLocator]:
        """
        Expand a single reference.

        Returns:
            Ordered locators; may be empty when a glob matches nothing.

        Raises:
            UnknownReferenceKind, InvalidGlob, CatalogUnavailable
        """
        prefix, delimiter, rest = reference.partition(REFERENCE_DELIMITER)
        if not delimiter:
            return [AssetLocator(path=reference)]

        if not prefix:
            raise UnknownReferenceKind(f"Reference has an empty kind: {reference!r}", reference)

        if prefix == PACK_KIND:
            if not rest:
                raise UnknownReferenceKind(f"Reference is missing a pack id: {reference!r}", reference)
            paths = await self._list_pack(rest, reference)
            locators = [AssetLocator(pack_id=rest, path=path) for path in paths]
        else:
            try:
                matches = compile_glob(rest)
            except InvalidGlob as e:
                e.reference = reference
                raise
            paths = await self._list_pack(prefix, reference)
            locators = [AssetLocator(pack_id=prefix, path=path) for path in paths if matches(path)]

        console.print(f"[dim][RESOLVER] {reference} -> {len(locators)} asset(s)[/dim]")
        return locators

    async def resolve_all(self, references: list[str]) -> list[AssetLocator]:
        """Resolve several references concurrently, concatenating in order."""
        groups = await asyncio.gather(*(self.resolve(reference) for reference in references))
        return [locator for group in groups for locator in group]

    async def resolve_aliases(
        self, aliases: dict[str, list[str]]
    ) -> dict[str, list[AssetLocator]]:
        """Resolve every alias of a template; alias order is preserved."""
        names = list(aliases)
        resolved = await asyncio.gather(*(self.resolve_all(aliases[name]) for name in names))
        return dict(zip(names, resolved))
