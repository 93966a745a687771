import asyncio
import json

import pytest

from db.db_access import SessionStore
from ecg_system.coordinator import RecordingState
from ecg_system.errors import DeviceError, PersistenceError
from ecg_system.gateways import summary as summary_module
from ecg_system.gateways.summary import FALLBACK_SUMMARY, SummaryGateway
from ecg_system.models import SessionStatus
from ecg_system.pipeline import CapturePipeline
from ecg_system.sensors.ecg.config import ECGConfig
from ecg_system.sensors.ecg.simulator import SimulatedTransport
from ecg_system.settings import AppSettings


def fast_config(**overrides):
    config = ECGConfig.for_simulation()
    config.tick_interval = 0.02
    config.countdown_seconds = 1
    config.reconnect_delay = 0.01
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


def make_pipeline(config=None, store=None, gateway=None, **kwargs):
    return CapturePipeline(
        settings=AppSettings(user_id='tester'),
        config=config or fast_config(),
        store=store,
        gateway=gateway,
        simulate=True,
        **kwargs,
    )


def drop_when_recording(pipeline):
    """Simulate the sensor going out of range once recording starts."""
    dropped = []

    def listener(snapshot):
        if snapshot.recording_state is RecordingState.RECORDING and not dropped:
            dropped.append(asyncio.get_running_loop().create_task(pipeline.transport.drop()))

    pipeline.coordinator.subscribe(listener)
    return dropped


def test_record_saves_completed_session():
    store = SessionStore({'url': 'sqlite://', 'echo': False})

    async def scenario():
        pipeline = make_pipeline(store=store)
        device = await pipeline.connect()
        assert device.name == 'ECG Simulator'

        session = await pipeline.record(10)
        summaries = store.list_sessions('tester')
        status = pipeline.get_status()
        await pipeline.close()
        return session, summaries, status

    session, summaries, status = asyncio.run(scenario())

    assert session is not None
    assert session.status is SessionStatus.COMPLETED
    assert [s.session_name for s in summaries] == ['Session 1']
    assert summaries[0].session_id == session.session_id
    assert status['saved_sessions'] == 1
    assert status['pending_saves'] == 0


def test_consecutive_recordings_get_sequential_names():
    store = SessionStore({'url': 'sqlite://', 'echo': False})

    async def scenario():
        pipeline = make_pipeline(store=store)
        await pipeline.connect()
        await pipeline.record(10)
        await pipeline.record(10)
        names = [s.session_name for s in store.list_sessions('tester')]
        await pipeline.close()
        return names

    assert sorted(asyncio.run(scenario())) == ['Session 1', 'Session 2']


def test_disconnect_during_recording_aborts_without_saving():
    store = SessionStore({'url': 'sqlite://', 'echo': False})

    async def scenario():
        pipeline = make_pipeline(store=store)
        await pipeline.connect()
        drop_when_recording(pipeline)

        session = await pipeline.record(10)
        aborted = pipeline.coordinator.last_session
        saved = store.list_sessions('tester')
        await pipeline.close()
        return session, aborted, saved

    session, aborted, saved = asyncio.run(scenario())

    assert session is None
    assert aborted.status is SessionStatus.ABORTED
    assert saved == []


def test_partial_session_saved_when_configured():
    store = SessionStore({'url': 'sqlite://', 'echo': False})

    async def scenario():
        pipeline = make_pipeline(config=fast_config(persist_partial_sessions=True), store=store)
        await pipeline.connect()
        drop_when_recording(pipeline)

        await pipeline.record(10)
        saved = store.list_sessions('tester')
        await pipeline.close()
        return saved

    saved = asyncio.run(scenario())
    assert len(saved) == 1
    assert saved[0].terminal_status == 'aborted'


def test_auto_reconnect_after_connection_lost():
    async def scenario():
        pipeline = make_pipeline(config=fast_config(auto_reconnect=True))
        await pipeline.connect()

        await pipeline.transport.drop()
        assert not pipeline.coordinator.is_connected

        await asyncio.sleep(0.2)
        connected = pipeline.coordinator.is_connected
        attempts = pipeline.reconnect_attempts
        await pipeline.close()
        return connected, attempts

    connected, attempts = asyncio.run(scenario())
    assert connected is True
    assert attempts == 1


def test_no_reconnect_after_user_disconnect():
    async def scenario():
        pipeline = make_pipeline(config=fast_config(auto_reconnect=True))
        await pipeline.connect()
        await pipeline.disconnect()
        await asyncio.sleep(0.1)
        result = (pipeline.coordinator.is_connected, pipeline.reconnect_attempts)
        await pipeline.close()
        return result

    assert asyncio.run(scenario()) == (False, 0)


def test_failed_save_is_recorded_not_raised():
    class BrokenStore:
        def save_session(self, session, user_id):
            raise PersistenceError('database is locked')

        def close(self):
            pass

    async def scenario():
        pipeline = make_pipeline(store=BrokenStore())
        await pipeline.connect()
        session = await pipeline.record(10)
        failed = list(pipeline.failed_saves)
        await pipeline.close()
        return session, failed

    session, failed = asyncio.run(scenario())
    assert session is not None
    assert failed == [session.session_id]


def test_connect_without_devices_raises():
    class EmptyTransport(SimulatedTransport):
        async def scan(self, timeout=None):
            self.listener.on_scan_started()
            self.listener.on_scan_stopped()
            return []

    async def scenario():
        pipeline = make_pipeline(transport_factory=EmptyTransport)
        try:
            await pipeline.connect()
        finally:
            await pipeline.close()

    with pytest.raises(DeviceError) as exc:
        asyncio.run(scenario())
    assert exc.value.code == DeviceError.NOT_FOUND


def test_summarize_without_gateway_uses_fallback():
    async def scenario():
        pipeline = make_pipeline()
        result = await pipeline.summarize('en')
        await pipeline.close()
        return result

    assert asyncio.run(scenario()) is FALLBACK_SUMMARY


def test_summarize_sends_stored_sessions(monkeypatch):
    store = SessionStore({'url': 'sqlite://', 'echo': False})
    prompts = []

    def fake_post(url, headers=None, data=None, timeout=None):
        prompts.append(json.loads(data)['contents'][0]['parts'][0]['text'])

        class Response:
            status_code = 200
            text = json.dumps({'candidates': [{'content': {'parts': [{'text': json.dumps({
                'summary': 'One normal session.',
                'observations': 'Regular rhythm.',
                'suggestions': ['Keep active'],
            })}]}}]})
        return Response()

    monkeypatch.setattr(summary_module.requests, 'post', fake_post)
    gateway = SummaryGateway(api_key='k' * 32, api_url='https://example.test', timeout=1)

    async def scenario():
        pipeline = make_pipeline(store=store, gateway=gateway)
        await pipeline.connect()
        await pipeline.record(10)
        result = await pipeline.summarize('ta')
        await pipeline.close()
        return result

    result = asyncio.run(scenario())

    assert result.summary == 'One normal session.'
    assert 'Patient ECG Analysis (1 session):' in prompts[0]
    assert 'Tamil' in prompts[0]
