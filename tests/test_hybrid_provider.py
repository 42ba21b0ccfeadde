"""Tests for the hybrid primary/secondary provider pool."""

import pytest

from lorekeeper.infra.hybrid_provider import HybridProviders
from lorekeeper.infra.llm_client import LLMError, LlmResponse

MESSAGES = [{"role": "system", "content": "s"}, {"role": "user", "content": "u"}]


class _Provider:
    def __init__(self, name, fail=False):
        self.name = name
        self.fail = fail
        self.calls = 0

    async def generate(self, messages, *, max_tokens, temperature):
        self.calls += 1
        if self.fail:
            raise LLMError(f"{self.name} down")
        return LlmResponse(output=self.name)


async def _call(provider):
    response = await provider.generate(MESSAGES, max_tokens=10, temperature=0.1)
    return response.output


class TestFailover:
    @pytest.mark.asyncio
    async def test_two_consecutive_failures_drop_secondary(self):
        primary, secondary = _Provider("primary"), _Provider("secondary", fail=True)
        pool = HybridProviders(primary, secondary, inter_call_delay=0)
        wrapped = pool.get_providers()[1]

        assert await _call(wrapped) == "primary"
        assert pool.is_hybrid()
        assert await _call(wrapped) == "primary"
        assert not pool.is_hybrid()
        assert pool.state == "primary-only"
        assert pool.get_providers() == [primary]

        # a recovered secondary is never used again this run
        secondary.fail = False
        assert await _call(wrapped) == "primary"
        assert secondary.calls == 2

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        primary, secondary = _Provider("primary"), _Provider("secondary", fail=True)
        pool = HybridProviders(primary, secondary, inter_call_delay=0)
        wrapped = pool.get_providers()[1]

        await _call(wrapped)
        secondary.fail = False
        assert await _call(wrapped) == "secondary"
        secondary.fail = True
        await _call(wrapped)
        assert pool.is_hybrid()

    def test_no_secondary(self):
        primary = _Provider("primary")
        pool = HybridProviders(primary)
        assert pool.state == "primary-only"
        assert pool.get_providers() == [primary]


class TestRunBatched:
    @pytest.mark.asyncio
    async def test_failed_item_yields_none(self):
        pool = HybridProviders(_Provider("primary"), inter_call_delay=0)

        async def worker(item, provider):
            if item == 2:
                raise ValueError("bad item")
            return item * 10

        results = await pool.run_batched([1, 2, 3], worker, label="test")
        assert results == [(1, 10), (2, None), (3, 30)]

    @pytest.mark.asyncio
    async def test_dual_mode_fans_out_across_providers(self):
        primary, secondary = _Provider("primary"), _Provider("secondary")
        pool = HybridProviders(primary, secondary, inter_call_delay=0)

        async def worker(item, provider):
            return await _call(provider)

        results = await pool.run_batched(["a", "b", "c"], worker)
        assert [r for _, r in results] == ["primary", "secondary", "primary"]

    @pytest.mark.asyncio
    async def test_batches_shrink_after_secondary_drops(self):
        primary, secondary = _Provider("primary"), _Provider("secondary", fail=True)
        pool = HybridProviders(primary, secondary, inter_call_delay=0)

        async def worker(item, provider):
            return await _call(provider)

        results = await pool.run_batched(list(range(6)), worker)
        assert all(r == "primary" for _, r in results)
        assert secondary.calls == 2
        assert not pool.is_hybrid()
