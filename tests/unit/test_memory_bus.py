"""
Unit tests for the in-memory event bus.

Tests cover:
- Basic publish/subscribe operations
- Partition assignment (per-key ordering)
- Per-group commits and redelivery of uncommitted records
- Testing helpers
- Record and position helpers used in log lines
"""

import pytest

from galaxi.catalog_sync.bus import BusConnectionError, InMemoryEventBus, StreamPos, StreamRecord


async def take(bus, topic, group_id, count):
    """Read ``count`` records from a fresh subscription, then close it."""
    records = []
    subscription = bus.subscribe(topic, group_id)
    try:
        async for record in subscription:
            records.append(record)
            if len(records) == count:
                break
    finally:
        await subscription.aclose()
    return records


class TestInMemoryEventBus:
    """Tests for InMemoryEventBus."""

    @pytest.fixture
    def bus(self):
        """Create a fresh, unconnected bus."""
        return InMemoryEventBus(num_partitions=4, poll_interval=0.05)

    @pytest.mark.asyncio
    async def test_connect_disconnect(self, bus):
        """Test connection lifecycle."""
        assert not bus.is_connected

        await bus.connect()
        assert bus.is_connected

        await bus.close()
        assert not bus.is_connected

    @pytest.mark.asyncio
    async def test_publish_requires_connection(self, bus):
        """Publish fails if not connected."""
        with pytest.raises(BusConnectionError):
            await bus.publish("test", "key1", b"value1")

    @pytest.mark.asyncio
    async def test_publish_returns_position(self, bus):
        """Publish returns the stream position."""
        await bus.connect()

        pos = await bus.publish("test", "key1", b"value1")

        assert pos.topic == "test"
        assert 0 <= pos.partition < 4
        assert pos.offset == 0
        assert pos.timestamp_ms > 0

    @pytest.mark.asyncio
    async def test_same_key_same_partition(self, bus):
        """Records with one key land on one partition with increasing offsets."""
        await bus.connect()

        positions = [await bus.publish("test", "movie-1", b"data") for _ in range(5)]

        assert len({p.partition for p in positions}) == 1
        assert [p.offset for p in positions] == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_different_keys_spread_over_partitions(self, bus):
        """Different keys hit more than one partition."""
        await bus.connect()

        partitions = set()
        for i in range(100):
            pos = await bus.publish("test", f"movie-{i}", b"data")
            partitions.add(pos.partition)

        assert len(partitions) > 1

    @pytest.mark.asyncio
    async def test_subscribe_delivers_in_key_order(self, bus):
        """A subscriber sees one key's records in publish order."""
        await bus.connect()
        for i in range(3):
            await bus.publish("test", "movie-1", f"v{i}".encode())

        records = await take(bus, "test", "group1", 3)

        assert [r.value for r in records] == [b"v0", b"v1", b"v2"]

    @pytest.mark.asyncio
    async def test_headers_are_delivered(self, bus):
        """Record headers survive the round trip."""
        await bus.connect()
        await bus.publish("test", "k", b"v", headers={"message-type": b"MovieCreated"})

        [record] = await take(bus, "test", "group1", 1)

        assert record.header("message-type") == "MovieCreated"
        assert record.header("missing") is None

    @pytest.mark.asyncio
    async def test_uncommitted_records_are_redelivered(self, bus):
        """A new subscription of the group resumes after the last commit."""
        await bus.connect()
        await bus.publish("test", "movie-1", b"first")
        await bus.publish("test", "movie-1", b"second")

        [first, second] = await take(bus, "test", "group1", 2)
        await bus.commit(first, "group1")

        [redelivered] = await take(bus, "test", "group1", 1)

        assert redelivered.value == b"second"
        assert redelivered.position == second.position

    @pytest.mark.asyncio
    async def test_commits_are_per_group(self, bus):
        """One group's commit does not move another group's position."""
        await bus.connect()
        await bus.publish("test", "movie-1", b"only")

        [record] = await take(bus, "test", "group1", 1)
        await bus.commit(record, "group1")

        [other] = await take(bus, "test", "group2", 1)
        assert other.value == b"only"

        positions = await bus.get_positions("test", "group1")
        assert positions[record.position.partition].offset == 1
        assert await bus.get_positions("test", "group2") == {}

    @pytest.mark.asyncio
    async def test_subscriber_sees_records_published_later(self, bus):
        """Records published after subscribing are delivered."""
        await bus.connect()
        subscription = bus.subscribe("test", "group1")

        await bus.publish("test", "k", b"late")
        record = await subscription.__anext__()
        await subscription.aclose()

        assert record.value == b"late"

    @pytest.mark.asyncio
    async def test_fail_publishes(self, bus):
        """Injected publish failures surface until cleared."""
        await bus.connect()
        bus.fail_publishes(BusConnectionError("broker down"))

        with pytest.raises(BusConnectionError):
            await bus.publish("test", "k", b"v")

        bus.fail_publishes(None)
        await bus.publish("test", "k", b"v")
        assert bus.get_record_count("test") == 1

    @pytest.mark.asyncio
    async def test_wait_for_commit(self, bus):
        """wait_for_commit reports committed record counts."""
        await bus.connect()
        await bus.publish("test", "a", b"1")
        await bus.publish("test", "b", b"2")

        assert not await bus.wait_for_commit("test", "group1", 1, timeout=0.05)

        for record in await take(bus, "test", "group1", 2):
            await bus.commit(record, "group1")

        assert await bus.wait_for_commit("test", "group1", 2, timeout=0.5)

    @pytest.mark.asyncio
    async def test_close_clears_data(self, bus):
        """Closing drops all topics."""
        await bus.connect()
        await bus.publish("test", "k", b"v")

        await bus.close()

        assert bus.get_record_count("test") == 0


class TestStreamRecord:
    def test_position_renders_as_topic_partition_offset(self):
        pos = StreamPos(topic="movie-status", partition=2, offset=7, timestamp_ms=0)

        assert str(pos) == "movie-status:2:7"

    def test_header_lookup(self):
        record = StreamRecord(
            key="k",
            value=b"{}",
            position=StreamPos(topic="t", partition=0, offset=0, timestamp_ms=0),
            headers={"correlation-id": b"abc"},
        )

        assert record.header("correlation-id") == "abc"
        assert record.header("reply-to") is None
        assert not hasattr(record, "value_json")
