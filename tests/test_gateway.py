"""
DiscordGateway listener fan-out and per-channel message ordering, driven
through dispatch() without logging in.
"""

import asyncio
from unittest.mock import Mock

import pytest

from services import DiscordGateway
from tests.conftest import make_guild, make_message


def channel_message(content, channel_id=1):
    message = make_message(content)
    message.channel.id = channel_id
    return message


@pytest.fixture
async def gateway():
    return DiscordGateway()


class TestListeners:

    @pytest.mark.asyncio
    async def test_fan_out_to_every_listener(self, gateway):
        first, second = Mock(), Mock()
        gateway.on('guild_join', first)
        gateway.on('guild_join', second)
        guild = make_guild()

        gateway.dispatch('guild_join', guild)
        await gateway.wait_for_listeners()

        first.assert_called_once_with(guild)
        second.assert_called_once_with(guild)
        assert gateway.listener_count('guild_join') == 2

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, gateway):
        handler = Mock()
        gateway.on('typing', handler)

        assert gateway.remove_listener('typing', handler)
        assert not gateway.remove_listener('typing', handler)
        gateway.dispatch('typing', make_message('x'))
        await gateway.wait_for_listeners()

        handler.assert_not_called()
        assert gateway.listener_count('typing') == 0

    @pytest.mark.asyncio
    async def test_async_listeners_are_awaited(self, gateway):
        seen = []

        async def handler(guild):
            await asyncio.sleep(0)
            seen.append(guild.id)

        gateway.on('guild_remove', handler)
        gateway.dispatch('guild_remove', make_guild(7))
        await gateway.wait_for_listeners()

        assert seen == [7]

    @pytest.mark.asyncio
    async def test_no_user_before_login(self, gateway):
        assert gateway.user_id is None


class TestMessageOrdering:

    @pytest.mark.asyncio
    async def test_messages_from_one_channel_run_one_at_a_time(self, gateway):
        order = []

        async def handler(message):
            order.append(('start', message.content))
            await asyncio.sleep(0.05)
            order.append(('end', message.content))

        gateway.on('message', handler)
        gateway.dispatch('message', channel_message('m1'))
        gateway.dispatch('message', channel_message('m2'))
        await gateway.wait_for_listeners()

        assert order == [('start', 'm1'), ('end', 'm1'), ('start', 'm2'), ('end', 'm2')]

    @pytest.mark.asyncio
    async def test_channels_do_not_wait_for_each_other(self, gateway):
        order = []

        async def handler(message):
            order.append(('start', message.content))
            await asyncio.sleep(0.05)
            order.append(('end', message.content))

        gateway.on('message', handler)
        gateway.dispatch('message', channel_message('a', channel_id=1))
        gateway.dispatch('message', channel_message('b', channel_id=2))
        await gateway.wait_for_listeners()

        assert order[:2] == [('start', 'a'), ('start', 'b')]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_the_queue(self, gateway):
        handled = []

        def handler(message):
            if message.content == 'bad':
                raise RuntimeError("boom")
            handled.append(message.content)

        gateway.on('message', handler)
        for content in ('one', 'bad', 'two'):
            gateway.dispatch('message', channel_message(content))
        await gateway.wait_for_listeners()

        assert handled == ['one', 'two']

    @pytest.mark.asyncio
    async def test_all_message_listeners_finish_before_the_next_message(self, gateway):
        order = []

        async def slow(message):
            await asyncio.sleep(0.02)
            order.append(('slow', message.content))

        def fast(message):
            order.append(('fast', message.content))

        gateway.on('message', slow)
        gateway.on('message', fast)
        gateway.dispatch('message', channel_message('m1'))
        gateway.dispatch('message', channel_message('m2'))
        await gateway.wait_for_listeners()

        assert order == [('slow', 'm1'), ('fast', 'm1'), ('slow', 'm2'), ('fast', 'm2')]
