"""Tests for the live subscriber (push subscription and polling fallback)."""

from contextlib import aclosing

import pytest

from conftest import make_log
from frima_onchain.models.events import EventKind
from frima_onchain.services.blockchain.subscriber import LiveSubscriber
from frima_onchain.services.exceptions import BlockchainConnectionError


async def take(stream, count: int) -> list:
    events = []
    async with aclosing(stream):
        async for event in stream:
            events.append(event)
            if len(events) == count:
                break
    return events


@pytest.mark.asyncio
class TestSubscription:
    async def test_streams_pushed_events_until_closed(self, fake_node, decoder):
        fake_node.subscription_logs = [
            make_log(decoder, EventKind.ITEM_LISTED, block_number=101),
            make_log(decoder, EventKind.ITEM_PURCHASED, block_number=102),
        ]
        subscriber = LiveSubscriber(fake_node, decoder)
        connected = []

        events = [
            event async for event in subscriber.subscribe(on_connected=lambda: connected.append(1))
        ]

        assert [event.kind for event in events] == [
            EventKind.ITEM_LISTED,
            EventKind.ITEM_PURCHASED,
        ]
        assert subscriber.mode == "subscription"
        assert connected == [1]

    async def test_undecodable_pushed_log_is_skipped(self, fake_node, decoder):
        good = make_log(decoder, EventKind.ITEM_CANCELLED, block_number=101)
        foreign = make_log(
            decoder,
            EventKind.ITEM_CANCELLED,
            block_number=101,
            log_index=1,
            address="0x0000000000000000000000000000000000000001",
        )
        fake_node.subscription_logs = [foreign, good]
        subscriber = LiveSubscriber(fake_node, decoder)

        events = [event async for event in subscriber.subscribe()]

        assert [event.log_index for event in events] == [0]

    async def test_connectivity_failure_raises_before_connecting(self, fake_node, decoder):
        fake_node.head_error = BlockchainConnectionError("refused")
        fake_node.subscription_logs = []
        subscriber = LiveSubscriber(fake_node, decoder)
        connected = []

        with pytest.raises(BlockchainConnectionError):
            async for _ in subscriber.subscribe(on_connected=lambda: connected.append(1)):
                pass

        assert connected == []
        assert fake_node.subscribe_calls == 0

    async def test_connectivity_check_timeout(self, fake_node, decoder):
        fake_node.head_delay = 0.5
        subscriber = LiveSubscriber(fake_node, decoder, health_check_timeout=0.01)

        with pytest.raises(BlockchainConnectionError, match="timed out"):
            await subscriber.check_connectivity()


@pytest.mark.asyncio
class TestPollingFallback:
    async def test_falls_back_to_polling_without_push_support(self, fake_node, decoder):
        fake_node.heads = [100, 105]
        fake_node.logs = [make_log(decoder, EventKind.ITEM_UPDATED, block_number=103)]
        subscriber = LiveSubscriber(fake_node, decoder, poll_interval=0)
        connected = []

        events = await take(subscriber.subscribe(on_connected=lambda: connected.append(1)), 1)

        assert subscriber.mode == "polling"
        assert connected == [1]
        assert events[0].kind is EventKind.ITEM_UPDATED
        assert fake_node.get_logs_calls == [(101, 105)]

    async def test_polls_only_new_blocks(self, fake_node, decoder):
        fake_node.heads = [100, 100, 102, 102, 104]
        fake_node.logs = [
            make_log(decoder, EventKind.ITEM_LISTED, block_number=99),
            make_log(decoder, EventKind.ITEM_LISTED, block_number=101),
            make_log(decoder, EventKind.ITEM_PURCHASED, block_number=104),
        ]
        subscriber = LiveSubscriber(fake_node, decoder, poll_interval=0)

        events = await take(subscriber.subscribe(), 2)

        assert [event.block_number for event in events] == [101, 104]
        assert fake_node.get_logs_calls == [(101, 102), (103, 104)]

    async def test_cursor_advances_past_failed_fetch(self, fake_node, decoder):
        fake_node.heads = [100, 105, 110]
        fake_node.get_logs_errors = [BlockchainConnectionError("rate limited")]
        fake_node.logs = [
            make_log(decoder, EventKind.ITEM_LISTED, block_number=103),
            make_log(decoder, EventKind.ITEM_CANCELLED, block_number=108),
        ]
        subscriber = LiveSubscriber(fake_node, decoder, poll_interval=0)

        events = await take(subscriber.subscribe(), 1)

        # Block 103 is lost with the failed window; polling continues at 106
        assert events[0].block_number == 108
        assert fake_node.get_logs_calls == [(101, 105), (106, 110)]

    async def test_head_failure_ends_polling(self, fake_node, decoder):
        original = fake_node.get_latest_block_number
        calls = []

        async def flaky_head():
            calls.append(1)
            if len(calls) > 1:
                raise BlockchainConnectionError("connection lost")
            return await original()

        fake_node.get_latest_block_number = flaky_head
        subscriber = LiveSubscriber(fake_node, decoder, poll_interval=0)

        with pytest.raises(BlockchainConnectionError, match="connection lost"):
            async for _ in subscriber.subscribe():
                pass

        assert subscriber.mode == "polling"
