"""
Tests for the metadata lookup port and its LRU cache.
"""

import pytest

from quest_tracker.metadata import CachedMetadataLookup, MetadataLookupPort
from quest_tracker.models import GameMetadata


class TestCachedMetadataLookup:

    def test_fake_port_satisfies_protocol(self, metadata_port):
        assert isinstance(metadata_port, MetadataLookupPort)
        assert isinstance(CachedMetadataLookup(metadata_port), MetadataLookupPort)

    @pytest.mark.asyncio
    async def test_hits_are_cached(self, metadata_port):
        lookup = CachedMetadataLookup(metadata_port)

        first = await lookup.fetch_by_id(100)
        second = await lookup.fetch_by_id(100)

        assert first is second
        assert metadata_port.calls == [100]

    @pytest.mark.asyncio
    async def test_misses_are_asked_again(self, metadata_port):
        lookup = CachedMetadataLookup(metadata_port)

        assert await lookup.fetch_by_id(1) is None
        metadata_port.games[1] = GameMetadata(id=1, name="Tunic")
        assert (await lookup.fetch_by_id(1)).name == "Tunic"
        assert metadata_port.calls == [1, 1]

    @pytest.mark.asyncio
    async def test_least_recently_used_evicted(self, metadata_port):
        metadata_port.games[300] = GameMetadata(id=300, name="Celeste")
        lookup = CachedMetadataLookup(metadata_port, max_entries=2)

        await lookup.fetch_by_id(100)
        await lookup.fetch_by_id(200)
        await lookup.fetch_by_id(100)
        await lookup.fetch_by_id(300)
        await lookup.fetch_by_id(100)
        await lookup.fetch_by_id(200)

        assert len(lookup) == 2
        assert metadata_port.calls == [100, 200, 300, 200]

    @pytest.mark.asyncio
    async def test_invalidate(self, metadata_port):
        lookup = CachedMetadataLookup(metadata_port)
        await lookup.fetch_by_id(100)
        await lookup.fetch_by_id(200)

        lookup.invalidate(100)
        assert len(lookup) == 1
        lookup.invalidate()
        assert len(lookup) == 0

    def test_rejects_empty_cache(self, metadata_port):
        with pytest.raises(ValueError):
            CachedMetadataLookup(metadata_port, max_entries=0)
