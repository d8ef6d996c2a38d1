# =============================================================================
# BLUEPRINT BINDINGS TESTS
# =============================================================================
# Tests for binding enumeration and output naming.
# =============================================================================

import itertools
from unittest.mock import AsyncMock, MagicMock

import pytest

from blueprint.core.bindings import (
    BindingSet,
    PrimaryAliasNamer,
    deduplicate_name,
    enumerate_bindings,
)
from blueprint.domain.models import AssetLocator
from blueprint.infra.storage import AssetNotFound


def locators(pack_id, *names):
    return [AssetLocator(pack_id=pack_id, path=name) for name in names]


class TestEnumerateBindings:
    """Test the Cartesian product of alias candidates."""

    def test_product_size(self):
        """2 backgrounds x 3 foregrounds -> 6 bindings."""
        bindings = enumerate_bindings(
            {"bg": locators("b", "1", "2"), "fg": locators("f", "1", "2", "3")}
        )
        assert len(bindings) == 6
        assert len(list(bindings)) == 6

    def test_every_binding_complete_and_distinct(self):
        """Bindings are the full product, each alias bound once."""
        aliases = {
            "bg": locators("b", "1", "2"),
            "fg": locators("f", "1", "2", "3"),
            "badge": locators("x", "1", "2"),
        }
        produced = [tuple(binding[name] for name in aliases) for binding in enumerate_bindings(aliases)]
        expected = list(itertools.product(*aliases.values()))
        assert len(produced) == 12
        assert len(set(produced)) == 12
        assert set(produced) == set(expected)

    def test_last_alias_varies_fastest(self):
        """Enumeration order is reproducible: last alias changes first."""
        bindings = list(
            enumerate_bindings({"bg": locators("b", "1", "2"), "fg": locators("f", "1", "2")})
        )
        assert [(b["bg"].path, b["fg"].path) for b in bindings] == [
            ("1", "1"),
            ("1", "2"),
            ("2", "1"),
            ("2", "2"),
        ]

    def test_empty_candidates_yield_nothing(self):
        """Any empty alias makes the product empty."""
        bindings = enumerate_bindings({"bg": locators("b", "1", "2"), "fg": []})
        assert len(bindings) == 0
        assert list(bindings) == []

    def test_no_aliases_yield_one_empty_binding(self):
        """The product of nothing is a single empty binding."""
        bindings = enumerate_bindings({})
        assert len(bindings) == 1
        assert list(bindings) == [{}]

    def test_restartable(self):
        """Iterating twice gives the same sequence."""
        bindings = enumerate_bindings({"bg": locators("b", "1", "2"), "fg": locators("f", "1")})
        assert list(bindings) == list(bindings)

    def test_names_and_cardinality(self):
        """BindingSet exposes alias names and per-alias counts."""
        bindings = BindingSet({"bg": locators("b", "1", "2"), "fg": locators("f", "1", "2", "3")})
        assert bindings.names == ["bg", "fg"]
        assert bindings.cardinality("bg") == 2
        assert bindings.cardinality("fg") == 3


class TestPrimaryAliasNamer:
    """Test output naming after the primary alias."""

    def _store(self, metadata=None, error=None):
        store = MagicMock()
        store.metadata = AsyncMock(return_value=metadata or {}, side_effect=error)
        return store

    @pytest.mark.asyncio
    async def test_uses_file_name_metadata(self):
        """The file_name metadata names the output, as PNG."""
        namer = PrimaryAliasNamer(self._store({"file_name": "hero.jpg"}), alias="fg")
        binding = {"fg": AssetLocator(pack_id="p", path="0001")}
        assert await namer.name(binding, 1) == "hero.png"

    @pytest.mark.asyncio
    async def test_file_name_directories_dropped(self):
        """Only the base name of file_name is used."""
        namer = PrimaryAliasNamer(self._store({"file_name": "dir/hero.webp"}), alias="fg")
        binding = {"fg": AssetLocator(pack_id="p", path="0001")}
        assert await namer.name(binding, 1) == "hero.png"

    @pytest.mark.asyncio
    async def test_falls_back_to_path(self):
        """Without metadata the asset path names the output."""
        namer = PrimaryAliasNamer(self._store(), alias="fg")
        binding = {"fg": AssetLocator(pack_id="p", path="b.jpg")}
        assert await namer.name(binding, 1) == "b.png"

    @pytest.mark.asyncio
    async def test_missing_asset_metadata(self):
        """An asset without stored metadata still gets a name."""
        locator = AssetLocator(pack_id="p", path="b.png")
        namer = PrimaryAliasNamer(self._store(error=AssetNotFound(locator)), alias="fg")
        assert await namer.name({"fg": locator}, 1) == "b.png"

    @pytest.mark.asyncio
    async def test_no_primary_alias(self):
        """Templates without the primary alias get sequential names."""
        store = self._store()
        namer = PrimaryAliasNamer(store, alias="fg")
        binding = {"bg": AssetLocator(pack_id="p", path="b.png")}
        assert await namer.name(binding, 7) == "instance-0007.png"
        store.metadata.assert_not_awaited()


class TestDeduplicateName:
    """Test output name collisions."""

    def test_unique_name_unchanged(self):
        """A free name is kept and recorded."""
        taken = set()
        assert deduplicate_name("a.png", taken) == "a.png"
        assert taken == {"a.png"}

    def test_collisions_get_counter(self):
        """Repeated names get -2, -3, ..."""
        taken = set()
        names = [deduplicate_name("a.png", taken) for _ in range(3)]
        assert names == ["a.png", "a-2.png", "a-3.png"]
