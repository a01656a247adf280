"""
Indexer Service Tests.

============================================================
PURPOSE
============================================================
Tests for block_ingestion.service: wiring from configuration,
bootstrap catch-up and the switch to live mode.

============================================================
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from block_ingestion.live_subscriber import SubscriberState
from block_ingestion.service import IndexerService
from core.config import IndexerConfig
from core.exceptions import ChainConnectionError, StoreConnectionError


def make_config(**overrides) -> IndexerConfig:
    values = dict(
        rpc_node="ws://localhost:9944",
        db_url="sqlite+aiosqlite:///:memory:",
        num_concurrent_jobs=3,
        retry_backoff_seconds=0,
        bootstrap_safety_factor=2,
        live_safety_factor=5,
    )
    values.update(overrides)
    return IndexerConfig(**values)


class TestIndexerServiceWiring:
    """Tests for from_config."""

    def test_from_config_uses_margins(self, chain, store):
        """Test safety margins are derived from the concurrency width."""
        service = IndexerService.from_config(make_config(), chain, store)

        assert service.subscriber._safety_margin == 15
        assert service._bootstrap_margin == 6
        assert service._coordinator.width == 3

    def test_from_config_passes_aliases(self, chain, store):
        """Test the configured CID alias table reaches the normalizer."""
        config = make_config(cid_aliases={"u0qj91": "canonical"})
        service = IndexerService.from_config(config, chain, store)

        assert service._processor._normalizer.cid_aliases == {"u0qj91": "canonical"}


class TestIndexerServiceBootstrap:
    """Tests for the bootstrap catch-up."""

    @pytest.mark.asyncio
    async def test_small_backlog_skips_bootstrap(self, chain, store):
        """Test a backlog within one batch is left to live mode."""
        chain.add_blocks([1, 2, 3])
        service = IndexerService.from_config(make_config(), chain, store)

        assert await service.bootstrap() is None
        assert store.stored_heights() == set()

    @pytest.mark.asyncio
    async def test_wide_backlog_caught_up(self, chain, store):
        """Test a backlog wider than one batch is caught up to the head."""
        chain.add_blocks(range(1, 11))
        service = IndexerService.from_config(make_config(), chain, store)

        result = await service.bootstrap()

        assert result.completed is True
        assert store.stored_heights() == set(range(1, 11))

    @pytest.mark.asyncio
    async def test_bootstrap_range(self, chain, store):
        """Test bootstrap starts bootstrap_margin below the last processed height."""
        chain.add_blocks(range(1, 31))
        service = IndexerService.from_config(make_config(), chain, store)
        await service.process(20)
        service._coordinator.catch_up = AsyncMock()

        await service.bootstrap()

        service._coordinator.catch_up.assert_awaited_once_with(14, 30)

    @pytest.mark.asyncio
    async def test_run_bootstraps_then_goes_live(self, chain, store):
        """Test run() catches up, then follows the subscription."""
        chain.add_blocks(range(1, 13))
        chain.finalized_height = 10
        chain.heads = [11, 12]
        service = IndexerService.from_config(make_config(), chain, store)

        await service.run()
        await service.subscriber.drain()

        assert service.subscriber.state is SubscriberState.LIVE
        assert store.stored_heights() == set(range(1, 13))

    @pytest.mark.asyncio
    async def test_catch_up_delegates(self, chain, store):
        """Test the CLI catch-up entry delegates to the coordinator."""
        service = IndexerService.from_config(make_config(), chain, store)
        service._coordinator = MagicMock()
        service._coordinator.catch_up = AsyncMock(return_value="result")

        assert await service.catch_up(5, 9) == "result"
        service._coordinator.catch_up.assert_awaited_once_with(5, 9)

    @pytest.mark.asyncio
    async def test_bootstrap_retries_failed_reads(self, chain, store):
        """Test store and chain outages before bootstrap are retried, not fatal."""
        chain.add_blocks(range(1, 11))
        store.fail_reads("find_max_height", StoreConnectionError("connection reset"))
        chain.head_failures.append(ChainConnectionError("node restarting"))
        service = IndexerService.from_config(make_config(), chain, store)

        result = await service.bootstrap()

        assert result.completed is True
        assert store.stored_heights() == set(range(1, 11))

    @pytest.mark.asyncio
    async def test_bootstrap_backoff(self, chain, store):
        """Test the configured backoff is awaited before re-reading the head."""
        chain.add_blocks([1, 2])
        chain.head_failures.append(ChainConnectionError("node restarting"))
        service = IndexerService.from_config(make_config(retry_backoff_seconds=4), chain, store)

        with patch("block_ingestion.catch_up.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await service.bootstrap()

        sleep.assert_awaited_once_with(4)
