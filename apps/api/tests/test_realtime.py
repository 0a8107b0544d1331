"""Tests for the realtime layer: events, backoff, subscriptions, live caches."""

import asyncio
import json
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from tokenhub.realtime.collection import LiveCollection
from tokenhub.realtime.events import ChangeEvent, ChangeType, ChannelState, matches
from tokenhub.realtime.feed import RedisChangeFeed, publish_events
from tokenhub.realtime.policy import ReconnectPolicy
from tokenhub.realtime.relay import RedemptionListRelay
from tokenhub.realtime.subscription import RealtimeSubscription
from tokenhub.realtime.watcher import RedemptionStatusWatcher

POLICY = ReconnectPolicy(base_delay=2.0, max_delay=15.0, max_attempts=3)


def insert(row):
    return ChangeEvent(ChangeType.INSERT, "redemption_requests", new=row)


def update(row, old=None):
    return ChangeEvent(ChangeType.UPDATE, "redemption_requests", new=row, old=old or {})


def delete(row):
    return ChangeEvent(ChangeType.DELETE, "redemption_requests", old=row)


class ScriptedFeed:
    """Each listen() call plays the next script entry.

    An entry is either an exception (raised before subscribing) or a list of
    events delivered after subscribing; a list may end with an exception
    (raised after the events) or ``BLOCK`` to stay connected until cancelled.
    """

    BLOCK = object()

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.calls = 0

    async def listen(self, table, on_subscribed=None):
        script = self.scripts[min(self.calls, len(self.scripts) - 1)]
        self.calls += 1
        if isinstance(script, BaseException):
            raise script
        if on_subscribed is not None:
            on_subscribed()
        for item in script:
            if item is self.BLOCK:
                await asyncio.Event().wait()
            elif isinstance(item, BaseException):
                raise item
            else:
                yield item


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)
        await asyncio.sleep(0)


async def never(_delay):
    await asyncio.Event().wait()


async def settle(predicate, rounds=200):
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


# ── Events and policy ─────────────────────────────────────────────────────


class TestChangeEvent:
    def test_json_shape(self):
        event = update({"id": "1", "status": "approved"}, {"id": "1", "status": "pending"})
        data = json.loads(event.to_json())
        assert data["eventType"] == "UPDATE"
        assert data["table"] == "redemption_requests"
        assert data["old"]["status"] == "pending"
        assert ChangeEvent.from_json(event.to_json()) == event

    def test_row_is_old_image_for_delete(self):
        assert delete({"id": "1"}).row == {"id": "1"}
        assert insert({"id": "2"}).row == {"id": "2"}

    def test_matches_compares_as_strings(self):
        rid = uuid.uuid4()
        assert matches({"id": str(rid), "status": "pending"}, {"id": rid})
        assert not matches({"id": "other"}, {"id": rid})
        assert matches({"id": "x"}, None)

    def test_from_json_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            ChangeEvent.from_json('{"eventType": "TRUNCATE", "table": "t"}')


class TestReconnectPolicy:
    def test_backoff_is_capped(self):
        assert [POLICY.delay(n) for n in range(5)] == [2.0, 4.0, 8.0, 15.0, 15.0]

    def test_exhausted(self):
        assert not POLICY.exhausted(2)
        assert POLICY.exhausted(3)

    def test_feed_policy_uses_longer_cap(self):
        policy = ReconnectPolicy.from_settings(60.0)
        assert policy.max_delay == 60.0
        assert policy.delay(10) == 60.0


# ── LiveCollection ────────────────────────────────────────────────────────


class TestLiveCollection:
    def test_insert_prepends_and_counts(self):
        rows = LiveCollection([{"id": "a"}], total=10)
        assert rows.apply(insert({"id": "b"}))
        assert [r["id"] for r in rows.rows] == ["b", "a"]
        assert rows.total == 11

    def test_duplicate_insert_ignored(self):
        rows = LiveCollection([{"id": "a"}])
        assert not rows.apply(insert({"id": "a"}))
        assert rows.total == 1

    def test_insert_outside_filter_ignored(self):
        rows = LiveCollection(include=lambda r: r["status"] == "pending")
        assert not rows.apply(insert({"id": "a", "status": "settled"}))
        assert rows.total == 0

    def test_update_replaces_in_place(self):
        rows = LiveCollection([{"id": "a", "v": 1}, {"id": "b", "v": 1}])
        assert rows.apply(update({"id": "b", "v": 2}))
        assert rows.rows[1] == {"id": "b", "v": 2}
        assert not rows.apply(update({"id": "zzz", "v": 2}))

    def test_delete_removes_and_never_goes_negative(self):
        rows = LiveCollection([{"id": "a"}], total=1)
        assert rows.apply(delete({"id": "a"}))
        assert rows.rows == [] and rows.total == 0
        assert rows.apply(delete({"id": "b"}))
        assert rows.total == 0

    def test_delete_of_uncached_row_on_later_page(self):
        rows = LiveCollection([{"id": "a"}], total=30)
        assert rows.apply(delete({"id": "z"}))
        assert rows.total == 29

    def test_reset(self):
        rows = LiveCollection([{"id": "a"}])
        rows.reset([{"id": "b"}, {"id": "c"}], 5)
        assert len(rows) == 2 and rows.total == 5


# ── RealtimeSubscription ──────────────────────────────────────────────────


@pytest.mark.anyio
class TestRealtimeSubscription:
    async def test_gives_up_after_max_attempts(self):
        feed = ScriptedFeed(RedisConnectionError("refused"))
        sleep = SleepRecorder()
        exhausted = AsyncMock()
        states = []
        sub = RealtimeSubscription(
            feed, "redemption_requests", AsyncMock(),
            policy=POLICY, on_state=states.append, on_exhausted=exhausted, sleep=sleep,
        )

        await sub.run()

        assert sleep.delays == [2.0, 4.0, 8.0]
        assert feed.calls == 4
        assert sub.attempts == 3
        exhausted.assert_awaited_once()
        assert set(states) == {ChannelState.CHANNEL_ERROR}

    async def test_successful_subscribe_resets_attempts(self):
        event = insert({"id": "r1"})
        error = RedisConnectionError("dropped")
        feed = ScriptedFeed(error, [event, error], error)
        sleep = SleepRecorder()
        handler = AsyncMock()
        sub = RealtimeSubscription(
            feed, "redemption_requests", handler, policy=POLICY, on_exhausted=AsyncMock(), sleep=sleep,
        )

        await sub.run()

        handler.assert_awaited_once_with(event)
        assert sleep.delays == [2.0, 2.0, 4.0, 8.0]

    async def test_timeout_state(self):
        states = []
        sub = RealtimeSubscription(
            ScriptedFeed(asyncio.TimeoutError()),
            "redemption_requests",
            AsyncMock(),
            policy=ReconnectPolicy(max_attempts=0),
            on_state=states.append,
            sleep=SleepRecorder(),
        )
        await sub.run()
        assert states == [ChannelState.TIMED_OUT]

    async def test_filters_rows(self):
        wanted, other = str(uuid.uuid4()), str(uuid.uuid4())
        feed = ScriptedFeed([update({"id": other}), update({"id": wanted}), RedisError("x")])
        handler = AsyncMock()
        sub = RealtimeSubscription(
            feed, "redemption_requests", handler,
            row_filter={"id": wanted}, policy=ReconnectPolicy(max_attempts=0), sleep=SleepRecorder(),
        )
        await sub.run()
        assert handler.await_count == 1
        assert handler.await_args.args[0].new["id"] == wanted

    async def test_stop_closes(self):
        states = []

        async def handler(event):
            sub.stop()

        sub = RealtimeSubscription(
            ScriptedFeed([insert({"id": "a"}), insert({"id": "b"})]),
            "redemption_requests",
            handler,
            policy=POLICY,
            on_state=states.append,
            sleep=SleepRecorder(),
        )
        await sub.run()
        assert states == [ChannelState.SUBSCRIBED, ChannelState.CLOSED]
        assert not sub.connected


# ── Redis feed ────────────────────────────────────────────────────────────


@pytest.mark.anyio
class TestRedisChangeFeed:
    async def test_publish_to_table_channel(self):
        redis = MagicMock()
        redis.publish = AsyncMock(return_value=2)
        feed = RedisChangeFeed(redis, prefix="rt")
        event = insert({"id": "a"})

        assert await feed.publish(event) == 2

        channel, payload = redis.publish.await_args.args
        assert channel == "rt:redemption_requests"
        assert json.loads(payload)["new"] == {"id": "a"}

    async def test_listen_skips_noise(self):
        event = insert({"id": "a"})

        async def messages():
            yield {"type": "subscribe", "data": 1}
            yield {"type": "message", "data": "not json"}
            yield {"type": "message", "data": event.to_json()}

        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.aclose = AsyncMock()
        pubsub.listen = messages
        redis = MagicMock()
        redis.pubsub.return_value = pubsub
        subscribed = MagicMock()
        feed = RedisChangeFeed(redis, prefix="rt", subscribe_timeout=1)

        received = [e async for e in feed.listen("redemption_requests", on_subscribed=subscribed)]

        assert received == [event]
        pubsub.subscribe.assert_awaited_once_with("rt:redemption_requests")
        subscribed.assert_called_once()
        pubsub.aclose.assert_awaited_once()

    async def test_publish_events_survives_redis_outage(self):
        feed = MagicMock()
        feed.publish = AsyncMock(side_effect=[RedisConnectionError("down"), 1])
        await publish_events(feed, [insert({"id": "a"}), insert({"id": "b"})])
        assert feed.publish.await_count == 2


# ── Status watcher ────────────────────────────────────────────────────────


@pytest.mark.anyio
class TestRedemptionStatusWatcher:
    async def test_history_and_terminal(self):
        watcher = RedemptionStatusWatcher("r1", AsyncMock(), ScriptedFeed([]), policy=POLICY)
        watcher.accept({"status": "pending"})
        watcher.accept({"status": "pending"})
        watcher.accept({"status": "approved"})
        assert [h["status"] for h in watcher.history] == ["pending", "approved"]
        assert watcher.history[1]["message"] == "Redemption request approved"
        assert not watcher.done
        watcher.accept({"status": "cancelled"})
        assert watcher.done
        assert watcher.queue.qsize() == 4
        assert not watcher.finished

    async def test_terminal_initial_status_starts_nothing(self):
        load = AsyncMock()
        watcher = RedemptionStatusWatcher("r1", load, ScriptedFeed([]), policy=POLICY)
        await watcher.start({"status": "settled"})
        assert watcher.done
        assert watcher._tasks == []
        load.assert_not_awaited()

    async def test_polls_until_terminal(self):
        load = AsyncMock(side_effect=[{"status": "approved"}, {"status": "settled"}])
        feed = ScriptedFeed([ScriptedFeed.BLOCK])
        watcher = RedemptionStatusWatcher(
            "r1", load, feed, poll_interval=5, policy=POLICY, sleep=SleepRecorder()
        )

        await watcher.start({"status": "pending"})
        await settle(lambda: watcher.done)
        await watcher.stop()

        assert [h["status"] for h in watcher.history] == ["pending", "approved", "settled"]

    async def test_realtime_update_triggers_refresh(self):
        rid = str(uuid.uuid4())
        load = AsyncMock(return_value={"status": "processing"})
        feed = ScriptedFeed([update({"id": rid, "status": "processing"}), ScriptedFeed.BLOCK])
        watcher = RedemptionStatusWatcher(rid, load, feed, policy=POLICY, sleep=never)

        await watcher.start({"status": "approved"})
        await settle(lambda: load.await_count == 1)
        await watcher.stop()

        assert watcher.snapshot == {"status": "processing"}
        assert watcher.subscription.state == ChannelState.SUBSCRIBED


# ── List relay ────────────────────────────────────────────────────────────


@pytest.mark.anyio
class TestRedemptionListRelay:
    async def test_snapshot_then_changes(self):
        org = str(uuid.uuid4())
        load_page = AsyncMock(return_value=([{"id": "a", "org_id": org}], 7))
        feed = ScriptedFeed(
            [
                insert({"id": "b", "org_id": org}),
                insert({"id": "c", "org_id": "other-org"}),
                ScriptedFeed.BLOCK,
            ]
        )
        relay = RedemptionListRelay(
            feed, load_page, row_filter={"org_id": org}, policy=POLICY, sleep=never
        )

        await relay.start()
        await settle(lambda: relay.queue.qsize() >= 3)
        await relay.stop()

        messages = [relay.queue.get_nowait() for _ in range(relay.queue.qsize())]
        assert [m["type"] for m in messages] == ["snapshot", "status", "change"]
        assert messages[1]["state"] == "SUBSCRIBED"
        assert messages[2]["total"] == 8
        assert [r["id"] for r in relay.collection.rows] == ["b", "a"]

    async def test_status_filter_still_receives_updates(self):
        org = str(uuid.uuid4())
        pending = {"id": "a", "org_id": org, "status": "pending"}
        load_page = AsyncMock(return_value=([pending], 1))
        feed = ScriptedFeed(
            [
                update({**pending, "status": "approved"}, old=pending),
                insert({"id": "b", "org_id": org, "status": "approved"}),
                insert({"id": "c", "org_id": org, "status": "pending"}),
                ScriptedFeed.BLOCK,
            ]
        )
        relay = RedemptionListRelay(
            feed,
            load_page,
            row_filter={"org_id": org},
            include_filter={"status": "pending"},
            policy=POLICY,
            sleep=never,
        )

        await relay.start()
        await settle(lambda: relay.queue.qsize() >= 4)
        await relay.stop()

        assert relay.subscription.row_filter == {"org_id": org}
        messages = [relay.queue.get_nowait() for _ in range(relay.queue.qsize())]
        assert [m["type"] for m in messages] == ["snapshot", "status", "change", "change"]
        assert [(r["id"], r["status"]) for r in relay.collection.rows] == [
            ("c", "pending"),
            ("a", "approved"),
        ]
        assert relay.collection.total == 2

    async def test_falls_back_to_polling(self):
        load_page = AsyncMock(return_value=([], 0))
        relay = RedemptionListRelay(
            ScriptedFeed(RedisConnectionError("refused")),
            load_page,
            poll_interval=30,
            policy=POLICY,
            sleep=SleepRecorder(),
        )

        await relay.start()
        await settle(lambda: relay.polling and load_page.await_count >= 2)
        await relay.stop()

        assert relay.subscription.attempts == 3
