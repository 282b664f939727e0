"""
Tests for real-time tailing.
"""

import pytest
from unittest.mock import Mock

from cwlogviewer.core.errors import AccessDenied
from cwlogviewer.core.event_bus import SessionEvent
from cwlogviewer.core.event_fetcher import EventFetcher
from cwlogviewer.core.models import LogStream, ScopeEntry
from cwlogviewer.core.tail_poller import TailPoller, TailState, TailWatermark

from conftest import client_error, raw_event


GROUP = '/aws/lambda/fn'


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def make_poller(fetcher, sample_config, clock, streams=None, **kwargs):
    return TailPoller(fetcher, [ScopeEntry(GROUP)], sample_config.tail, sample_config.retry,
                      streams=streams, clock=clock, **kwargs)


class TestTailWatermark:
    """Test cases for TailWatermark."""

    def test_admits_only_new_events(self, make_event):
        """Test that older events and recently seen ids are rejected."""
        seen = make_event('s', 200, event_id='seen')
        watermark = TailWatermark(200)
        watermark.record(seen)

        assert not watermark.admits(make_event('s', 100))
        assert not watermark.admits(seen)
        assert watermark.admits(make_event('s', 200, event_id='other'))
        assert watermark.admits(make_event('s', 250))

    def test_prune_forgets_old_ids(self, make_event):
        """Test that ids older than the horizon are dropped."""
        watermark = TailWatermark(0)
        watermark.record(make_event('s', 1000, event_id='old'))
        watermark.record(make_event('s', 20000, event_id='new'))

        watermark.prune(15000)

        assert list(watermark.recent_ids) == ['new']
        assert watermark.timestamp == 20000


class TestTick:
    """Test cases for single polling rounds."""

    def test_delivers_only_events_after_watermark(self, fake_client, fetcher, sample_config, clock):
        """Test the delta for a stream whose event at the watermark was already seen."""
        fake_client.add_stream(GROUP, 's', [raw_event(100, 'before'), raw_event(200, 'seen'),
                                            raw_event(250, 'new')])
        stream = LogStream(GROUP, 's')
        seen = EventFetcher.convert_event(stream.stream_id, raw_event(200, 'seen'))
        watermarks = {stream.stream_id: TailWatermark(200, {seen.event_id: 200})}

        poller = make_poller(fetcher, sample_config, clock, streams=[stream],
                             start_time=0, watermarks=watermarks)

        delta = poller.tick()
        assert [e.message for e in delta] == ['new']
        assert poller.watermark(stream.stream_id).timestamp == 250

        assert poller.tick() == []
        assert poller.drain_ready() == delta

    def test_merges_streams_in_time_order(self, fake_client, fetcher, sample_config, clock):
        """Test that a delta interleaves new events of several streams."""
        fake_client.add_stream(GROUP, 'a', [raw_event(10, 'a10'), raw_event(30, 'a30')])
        fake_client.add_stream(GROUP, 'b', [raw_event(20, 'b20'), raw_event(40, 'b40')])
        streams = [LogStream(GROUP, 'a'), LogStream(GROUP, 'b')]

        poller = make_poller(fetcher, sample_config, clock, streams=streams, start_time=0)

        assert [e.message for e in poller.tick()] == ['a10', 'b20', 'a30', 'b40']

    def test_new_events_delivered_once(self, fake_client, fetcher, sample_config, clock):
        """Test that consecutive ticks continue from the last position."""
        fake_client.add_stream(GROUP, 's', [raw_event(10, 'one')])
        stream = LogStream(GROUP, 's')
        poller = make_poller(fetcher, sample_config, clock, streams=[stream], start_time=0)

        assert [e.message for e in poller.tick()] == ['one']

        fake_client.append(GROUP, 's', raw_event(20, 'two'))
        fake_client.append(GROUP, 's', raw_event(20, 'three'))
        clock.now += 1

        assert sorted(e.message for e in poller.tick()) == ['three', 'two']
        assert poller.tick() == []
        assert fake_client.calls_for('get_log_events')[-1]['nextToken'] is not None

    def test_same_millisecond_after_watermark(self, fake_client, fetcher, sample_config, clock):
        """Test that a late event sharing the watermark millisecond is still delivered."""
        fake_client.add_stream(GROUP, 's', [raw_event(50, 'first')])
        stream = LogStream(GROUP, 's')
        poller = make_poller(fetcher, sample_config, clock, streams=[stream], start_time=0)
        poller.tick()

        # Reset the cursor so the next read starts at the watermark again.
        poller._streams[stream.stream_id].cursor = None
        fake_client.append(GROUP, 's', raw_event(50, 'second'))

        assert [e.message for e in poller.tick()] == ['second']

    def test_events_before_start_time_are_skipped(self, fake_client, fetcher, sample_config, clock):
        """Test that the initial watermark bounds the first read."""
        fake_client.add_stream(GROUP, 's', [raw_event(10, 'old'), raw_event(500, 'recent')])
        poller = make_poller(fetcher, sample_config, clock, streams=[LogStream(GROUP, 's')], start_time=400)

        assert [e.message for e in poller.tick()] == ['recent']

    def test_throttled_stream_backs_off(self, fake_client, mock_limiter, sample_config, clock):
        """Test that a throttled stream is skipped until its backoff expires."""
        fake_client.add_stream(GROUP, 'a', [raw_event(10, 'a10')])
        fake_client.add_stream(GROUP, 'b', [raw_event(20, 'b20')])
        fetcher = EventFetcher(fake_client, limiter=mock_limiter, page_size=2)
        poller = make_poller(fetcher, sample_config, clock,
                             streams=[LogStream(GROUP, 'a'), LogStream(GROUP, 'b')], start_time=0)
        fake_client.failures.append(client_error('ThrottlingException'))

        assert [e.message for e in poller.tick()] == ['b20']
        mock_limiter.penalize.assert_called_once()

        state = poller._streams[f"{GROUP}/a"]
        assert state.next_poll > clock.now
        assert state.backoff_level == 1

        clock.now = state.next_poll
        assert [e.message for e in poller.tick()] == ['a10']
        assert state.backoff_level == 0

    def test_throttle_after_first_page_keeps_events(self, fake_client, fetcher, sample_config, clock):
        """Test that pages read before a throttled request are delivered and never skipped."""
        fake_client.add_stream(GROUP, 's', [raw_event(10, 'one')])
        stream = LogStream(GROUP, 's')
        poller = make_poller(fetcher, sample_config, clock, streams=[stream], start_time=0)
        poller.tick()

        fake_client.append(GROUP, 's', raw_event(500, 'important'))
        # The first read of the tick succeeds, the end-of-stream check is throttled.
        fake_client.failures.extend([None, client_error('ThrottlingException')])

        assert [e.message for e in poller.tick()] == ['important']
        state = poller._streams[stream.stream_id]
        assert state.backoff_level == 1

        clock.now = state.next_poll
        assert poller.tick() == []
        assert state.backoff_level == 0
        assert [e.message for e in poller.drain_ready()] == ['one', 'important']

    def test_transient_error_after_first_page_keeps_events(self, fake_client, fetcher,
                                                           sample_config, clock):
        """Test that a failing later page counts as a failure without losing earlier pages."""
        fake_client.add_stream(GROUP, 's', [raw_event(10, 'one'), raw_event(20, 'two'),
                                            raw_event(30, 'three')])
        stream = LogStream(GROUP, 's')
        poller = make_poller(fetcher, sample_config, clock, streams=[stream], start_time=0)
        fake_client.failures.extend([None, client_error('ServiceUnavailableException')])

        assert [e.message for e in poller.tick()] == ['one', 'two']
        assert poller._streams[stream.stream_id].failures == 1

        assert [e.message for e in poller.tick()] == ['three']
        assert poller._streams[stream.stream_id].failures == 0

    def test_missing_stream_is_dropped(self, fake_client, fetcher, sample_config, clock):
        """Test that a deleted stream is removed with a warning."""
        fake_client.add_stream(GROUP, 'a', [raw_event(10, 'a10')])
        bus = Mock()
        poller = make_poller(fetcher, sample_config, clock, event_bus=bus, start_time=0,
                             streams=[LogStream(GROUP, 'a'), LogStream(GROUP, 'deleted')])

        assert [e.message for e in poller.tick()] == ['a10']
        assert [s.name for s in poller.streams] == ['a']
        assert len(poller.warnings) == 1
        bus.publish.assert_any_call(SessionEvent.WARNING, poller.warnings[0], source='tail')

    def test_expired_cursor_resumes_from_watermark(self, fake_client, fetcher, sample_config, clock):
        """Test that a rejected token is replaced without repeating events."""
        fake_client.add_stream(GROUP, 's', [raw_event(10, 'one')])
        stream = LogStream(GROUP, 's')
        poller = make_poller(fetcher, sample_config, clock, streams=[stream], start_time=0)
        poller.tick()

        fake_client.append(GROUP, 's', raw_event(20, 'two'))
        fake_client.failures.append(client_error('InvalidParameterException'))

        assert [e.message for e in poller.tick()] == ['two']

    def test_transient_errors_warn_after_budget(self, fake_client, fetcher, sample_config, clock):
        """Test that repeated transient failures are reported once."""
        fake_client.add_stream(GROUP, 's', [])
        sample_config.retry.max_attempts = 2
        poller = make_poller(fetcher, sample_config, clock, streams=[LogStream(GROUP, 's')], start_time=0)

        for _ in range(3):
            fake_client.failures.append(client_error('ServiceUnavailableException'))
            assert poller.tick() == []

        assert len(poller.warnings) == 1

    def test_access_denied_propagates(self, fake_client, fetcher, sample_config, clock):
        """Test that authorization failures abort the tick."""
        fake_client.add_stream(GROUP, 's', [])
        poller = make_poller(fetcher, sample_config, clock, streams=[LogStream(GROUP, 's')], start_time=0)
        fake_client.failures.append(client_error('AccessDeniedException'))

        with pytest.raises(AccessDenied):
            poller.tick()

    def test_resolves_streams_from_scope(self, fake_client, fetcher, sample_config, clock):
        """Test that streams are listed on the first tick when not given."""
        fake_client.add_stream(GROUP, 'a', [raw_event(10, 'a10')])
        poller = make_poller(fetcher, sample_config, clock, start_time=0)

        assert [e.message for e in poller.tick()] == ['a10']
        assert [s.stream_id for s in poller.streams] == [f"{GROUP}/a"]

    def test_new_stream_admitted_on_refresh(self, fake_client, fetcher, sample_config, clock):
        """Test that streams created while tailing are picked up."""
        fake_client.add_stream(GROUP, 'a', [])
        poller = make_poller(fetcher, sample_config, clock, start_time=0)
        poller.tick()

        clock.now += sample_config.tail.stream_refresh_interval
        fake_client.add_stream(GROUP, 'b', [raw_event(int(clock.now * 1000), 'b-new')])

        assert [e.message for e in poller.tick()] == ['b-new']

    def test_missing_group_warns(self, fake_client, fetcher, sample_config, clock):
        """Test that tailing a scope without streams reports warnings."""
        poller = make_poller(fetcher, sample_config, clock, start_time=0)

        assert poller.tick() == []
        assert any('not found' in warning for warning in poller.warnings)


class TestPollingThread:
    """Test cases for the background polling loop."""

    def test_events_delivered_until_stopped(self, fake_client, fetcher, sample_config):
        """Test that a started poller streams events and stops cleanly."""
        fake_client.add_stream(GROUP, 's', [raw_event(10, 'one'), raw_event(20, 'two')])
        poller = TailPoller(fetcher, [ScopeEntry(GROUP)], sample_config.tail, sample_config.retry,
                            streams=[LogStream(GROUP, 's')], start_time=0)

        poller.start()
        received = []
        for event in poller.events(timeout=5):
            received.append(event.message)
            if len(received) == 2:
                break
        poller.stop(timeout=5)

        assert received == ['one', 'two']
        assert poller.state is TailState.STOPPED
        assert not poller._thread.is_alive()

    def test_fatal_error_ends_event_stream(self, fake_client, fetcher, sample_config):
        """Test that a fatal error stops polling and is raised to the consumer."""
        fake_client.add_stream(GROUP, 's', [])
        fake_client.failures.append(client_error('AccessDeniedException'))
        poller = TailPoller(fetcher, [ScopeEntry(GROUP)], sample_config.tail, sample_config.retry,
                            streams=[LogStream(GROUP, 's')], start_time=0)

        poller.start()
        with pytest.raises(AccessDenied):
            list(poller.events(timeout=5))

        assert poller.stopped
        assert isinstance(poller.error, AccessDenied)

    def test_drain_ready_does_not_block(self, fetcher, sample_config, clock):
        """Test that draining an idle poller returns immediately."""
        poller = make_poller(fetcher, sample_config, clock, streams=[LogStream(GROUP, 's')], start_time=0)
        assert poller.drain_ready() == []
