"""
Tests for progress publishing.

Tests cover:
- Snapshot percentages and supersession rules
- Redis publishing (mocked client)
- Failure handling and terminal retries
- Subscriber-side ordering
"""

import itertools
import json
from unittest.mock import MagicMock, patch

import pytest

from apps.weaves.publisher import (
    NullProgressPublisher,
    ProgressPublisher,
    ProgressSnapshot,
    RedisProgressPublisher,
    channel_name,
    get_publisher,
    subscribe_progress,
)


def snapshot(checked=0, total=10, weaves=0, status='running', run_id='run-1'):
    return ProgressSnapshot(
        run_id=run_id, plexus_id='plexus-1', status=status,
        repo_pairs_checked=checked, repo_pairs_total=total, weaves_found=weaves,
    )


# ============================================================================
# Snapshots
# ============================================================================

class TestProgressSnapshot:

    def test_percent(self):
        assert snapshot(checked=5).progress_percent == 50.0
        assert snapshot(checked=0, total=0).progress_percent == 0.0
        assert snapshot(checked=1, total=3).progress_percent == 33.33

    def test_payload_shape(self):
        payload = snapshot(checked=2, weaves=1).to_payload('weave:progress')
        assert payload['event'] == 'weave:progress'
        assert payload['repo_pairs_checked'] == 2
        assert payload['weaves_found'] == 1
        assert payload['progress_percent'] == 20.0
        assert 'timestamp' in payload

    def test_round_trip_from_payload(self):
        original = snapshot(checked=4, weaves=2)
        assert ProgressSnapshot.from_payload(original.to_payload('weave:progress')) == original

    def test_supersedes(self):
        assert snapshot(checked=3).supersedes(None)
        assert snapshot(checked=3).supersedes(snapshot(checked=2))
        assert snapshot(checked=3).supersedes(snapshot(checked=3))
        assert not snapshot(checked=2).supersedes(snapshot(checked=3))
        assert not snapshot(checked=4, weaves=0).supersedes(snapshot(checked=3, weaves=1))

    def test_terminal_never_replaced_by_running(self):
        done = snapshot(checked=10, status='completed')
        assert not snapshot(checked=10).supersedes(done)
        assert snapshot(checked=1, run_id='run-2').supersedes(done)

    def test_channel_name(self):
        assert channel_name('abc') == 'plexus-abc'


# ============================================================================
# Publishers
# ============================================================================

class TestRedisProgressPublisher:

    @patch('apps.weaves.publisher.redis.from_url')
    def test_publishes_json_to_plexus_channel(self, from_url):
        client = from_url.return_value
        publisher = RedisProgressPublisher(url='redis://example:6379/0')

        assert publisher.publish('p1', snapshot(checked=1), 'weave:progress') is True

        from_url.assert_called_once_with('redis://example:6379/0', decode_responses=True)
        channel, body = client.publish.call_args.args
        assert channel == 'plexus-p1'
        assert json.loads(body)['repo_pairs_checked'] == 1

    @patch('apps.weaves.publisher.metrics.increment_publish_failures')
    @patch('apps.weaves.publisher.redis.from_url')
    def test_failure_is_swallowed(self, from_url, failures):
        from_url.return_value.publish.side_effect = ConnectionError('refused')
        publisher = RedisProgressPublisher(url='redis://example:6379/0')

        assert publisher.publish('p1', snapshot()) is False
        failures.assert_called_once_with('weave:progress')

    @patch('apps.weaves.publisher.time.sleep')
    @patch('apps.weaves.publisher.redis.from_url')
    def test_terminal_publish_retries(self, from_url, sleep):
        from_url.return_value.publish.side_effect = [ConnectionError('refused'), ConnectionError('refused'), 1]
        publisher = RedisProgressPublisher(url='redis://example:6379/0')

        assert publisher.publish_terminal('p1', snapshot(status='completed'), 'weave:completed') is True
        assert from_url.return_value.publish.call_count == 3
        assert sleep.call_count == 2

    @patch('apps.weaves.publisher.time.sleep')
    @patch('apps.weaves.publisher.redis.from_url')
    def test_terminal_publish_gives_up(self, from_url, sleep):
        from_url.return_value.publish.side_effect = ConnectionError('refused')
        publisher = RedisProgressPublisher(url='redis://example:6379/0')

        assert publisher.publish_terminal('p1', snapshot(status='failed'), 'weave:failed') is False
        assert from_url.return_value.publish.call_count == publisher.terminal_attempts

    @patch('apps.weaves.publisher.redis.from_url')
    def test_close(self, from_url):
        publisher = RedisProgressPublisher(url='redis://example:6379/0')
        publisher.publish('p1', snapshot())
        publisher.close()
        from_url.return_value.close.assert_called_once()


def test_get_publisher_uses_setting():
    assert isinstance(get_publisher(), NullProgressPublisher)


def test_base_publisher_requires_send():
    with pytest.raises(TypeError):
        ProgressPublisher()

    class Incomplete(ProgressPublisher):
        pass

    with pytest.raises(TypeError):
        Incomplete()


# ============================================================================
# Subscriber
# ============================================================================

class TestSubscribeProgress:

    @patch('apps.weaves.publisher.redis.from_url')
    def test_drops_regressing_snapshots(self, from_url):
        def message(checked, event='weave:progress', status='running'):
            payload = snapshot(checked=checked, status=status).to_payload(event)
            return {'type': 'message', 'data': json.dumps(payload)}

        pubsub = MagicMock()
        pubsub.get_message.side_effect = [
            None,
            message(3),
            message(2),
            {'type': 'message', 'data': 'not json'},
            message(5),
            message(10, 'weave:completed', 'completed'),
        ]
        from_url.return_value.pubsub.return_value = pubsub

        received = list(itertools.islice(subscribe_progress('p1', url='redis://example:6379/0'), 3))

        assert [s.repo_pairs_checked for _, s in received] == [3, 5, 10]
        assert received[-1][0] == 'weave:completed'
        pubsub.subscribe.assert_called_once_with('plexus-p1')
