import asyncio
from types import SimpleNamespace

import pytest

from attendance_engine.core.event_bus import SUBSTITUTE_ASSIGNED, TEACHER_CHECKIN, SessionEventBus
from attendance_engine.routers.events import event_stream


def test_publish_wraps_payload_with_server_time():
    with_clock = SessionEventBus()
    received = []
    with_clock.subscribe(received.append)

    delivered = with_clock.publish(SUBSTITUTE_ASSIGNED, {'sessionId': 42, 'teacherId': 7})

    assert delivered == 1
    assert received[0]['event'] == 'substitute:assigned'
    assert received[0]['payload'] == {'sessionId': 42, 'teacherId': 7}
    assert isinstance(received[0]['serverTimeMs'], int)


def test_failing_subscriber_does_not_block_others():
    bus = SessionEventBus()
    received = []

    def broken(_envelope):
        raise RuntimeError('client gone')

    bus.subscribe(broken)
    bus.subscribe(received.append)

    assert bus.publish(TEACHER_CHECKIN, {'teacherId': 7}) == 1
    assert [item['event'] for item in received] == ['teacher:checkin']


def test_unknown_event_is_rejected():
    bus = SessionEventBus()
    with pytest.raises(ValueError):
        bus.publish('substitute:deleted', {})


def test_unsubscribe_stops_delivery():
    bus = SessionEventBus()
    received = []
    handler = bus.subscribe(received.append)
    bus.unsubscribe(handler)
    bus.unsubscribe(handler)

    assert bus.subscriber_count == 0
    assert bus.publish(SUBSTITUTE_ASSIGNED, {'sessionId': 1}) == 0
    assert received == []


def test_stream_receives_events_published_from_worker_thread():
    bus = SessionEventBus(queue_size=2)

    async def scenario():
        stream = bus.open_stream()
        try:
            await asyncio.to_thread(bus.publish, SUBSTITUTE_ASSIGNED, {'sessionId': 42, 'teacherId': 7})
            envelope = await asyncio.wait_for(stream.get(), timeout=2)
        finally:
            bus.close_stream(stream)
        return envelope

    envelope = asyncio.run(scenario())
    assert envelope['payload']['teacherId'] == 7
    assert bus.subscriber_count == 0


def test_full_stream_drops_instead_of_blocking():
    bus = SessionEventBus(queue_size=1)

    async def scenario():
        stream = bus.open_stream()
        for teacher_id in (7, 9, 11):
            bus.publish(TEACHER_CHECKIN, {'teacherId': teacher_id})
        await asyncio.sleep(0)
        first = await asyncio.wait_for(stream.get(), timeout=2)
        bus.close_stream(stream)
        return first, stream.dropped

    first, dropped = asyncio.run(scenario())
    assert first['payload']['teacherId'] == 7
    assert dropped == 2


def test_failed_handshake_releases_stream():
    bus = SessionEventBus()

    class RefusingWebSocket:
        app = SimpleNamespace(state=SimpleNamespace(event_bus=bus))

        async def accept(self):
            raise RuntimeError('handshake refused')

    with pytest.raises(RuntimeError):
        asyncio.run(event_stream(RefusingWebSocket(), events=None))
    assert bus.subscriber_count == 0
