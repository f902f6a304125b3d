"""Tests for the rollup and retention workers."""

import asyncio

import pytest

from linkwatch.models.traffic import TrafficSample
from linkwatch.services.interface_cache import InterfaceCache
from linkwatch.services.maintenance import RetentionWorker, RollupWorker

from fakes import T0, at, reading


def sample(device_id, ts, rx_bps, name="ether1") -> TrafficSample:
    return TrafficSample(
        device_id=device_id,
        interface_name=name,
        timestamp=ts,
        rx_bytes_total=0,
        tx_bytes_total=0,
        rx_bps=rx_bps,
        total_bps=rx_bps,
    )


class TestRollupWorker:
    @pytest.mark.asyncio
    async def test_hourly_and_daily_buckets(self, repos, settings, device, state):
        for i, rx in enumerate((100, 200, 300)):
            s = sample(device.id, at(i * 60), rx)
            state.samples[s.key] = s
        late = sample(device.id, at(3600), 1000)
        state.samples[late.key] = late
        worker = RollupWorker(repos, settings)

        result = await worker.run_once(now=at(2 * 3600))

        assert result == {"hourly": 2, "daily": 1}
        first_hour = state.hourly[(device.id, "ether1", T0)]
        assert first_hour.rx_bps == 200
        assert first_hour.max_rx_bps == 300
        assert first_hour.sample_count == 3
        day = state.daily[(device.id, "ether1", T0.replace(hour=0))]
        assert day.sample_count == 4
        assert day.rx_bps == 400
        assert state.watermarks["hourly"] == at(2 * 3600)

    @pytest.mark.asyncio
    async def test_incremental_run_revisits_lookback(self, repos, settings, device, state):
        worker = RollupWorker(repos, settings)
        await worker.run_once(now=at(3 * 3600))

        # a sample for an already rolled-up hour arrives late
        late = sample(device.id, at(2 * 3600 + 30), 50)
        state.samples[late.key] = late
        await worker.run_once(now=at(4 * 3600))

        assert (device.id, "ether1", at(2 * 3600)) in state.hourly

    @pytest.mark.asyncio
    async def test_watermark_never_moves_backwards(self, repos, settings, state):
        worker = RollupWorker(repos, settings)
        await worker.run_once(now=at(5 * 3600))
        await worker.run_once(now=at(3600))

        assert state.watermarks["hourly"] == at(5 * 3600)


class TestRetentionWorker:
    @pytest.mark.asyncio
    async def test_purges_in_batches(self, repos, settings, device, state):
        settings.sample_retention_days = 1
        for i in range(5):
            s = sample(device.id, at(-3 * 86400 + i), 1)
            state.samples[s.key] = s
        fresh = sample(device.id, at(0), 1)
        state.samples[fresh.key] = fresh
        worker = RetentionWorker(repos, settings=settings)

        removed = await worker.run_once(now=at(0))

        assert removed["raw"] == 5
        assert list(state.samples) == [fresh.key]

    @pytest.mark.asyncio
    async def test_leaves_raw_samples_to_the_database(self, repos, settings, device, state):
        settings.sample_retention_days = 1
        old = sample(device.id, at(-3 * 86400), 1)
        state.samples[old.key] = old
        worker = RetentionWorker(repos, raw_managed_by_database=True, settings=settings)

        removed = await worker.run_once(now=at(0))

        assert removed["raw"] == 0
        assert old.key in state.samples

    @pytest.mark.asyncio
    async def test_trims_rollups(self, repos, settings, device, state):
        settings.sample_retention_days = 1
        old = sample(device.id, at(-3 * 86400), 1)
        state.samples[old.key] = old
        await RollupWorker(repos, settings).run_once(now=at(-3 * 86400 + 3600))
        assert state.hourly

        removed = await RetentionWorker(repos, settings=settings).run_once(now=at(0))

        assert removed["hourly"] == 1
        assert removed["daily"] == 1
        assert state.hourly == {}

    @pytest.mark.asyncio
    async def test_evicts_interfaces_when_configured(self, repos, settings, device, state):
        settings.interface_evict_hours = 48
        cache = InterfaceCache(repos, settings)
        await cache.upsert(device.id, reading("old"), at(-72 * 3600))
        await cache.upsert(device.id, reading("ether1"), at(0))

        removed = await RetentionWorker(repos, cache, settings=settings).run_once(now=at(0))

        assert removed["interfaces"] == 1
        assert [k[1] for k in state.cached] == ["ether1"]

    @pytest.mark.asyncio
    async def test_keeps_interfaces_by_default(self, repos, settings, device, state):
        cache = InterfaceCache(repos, settings)
        await cache.upsert(device.id, reading("old"), at(-365 * 86400))

        removed = await RetentionWorker(repos, cache, settings=settings).run_once(now=at(0))

        assert removed["interfaces"] == 0
        assert len(state.cached) == 1


class TestPeriodicLoop:
    @pytest.mark.asyncio
    async def test_errors_do_not_stop_the_loop(self, repos, settings):
        worker = RetentionWorker(repos, settings=settings)
        worker.interval = 0.001
        calls = []

        async def flaky(now=None):
            calls.append(now)
            raise RuntimeError("database went away")

        worker.run_once = flaky
        await worker.start()
        await asyncio.sleep(0.01)
        await worker.stop()

        assert len(calls) > 1
