"""Tests for the autocapture state machine and frame sampler."""
import asyncio

import pytest

from conftest import FRAME_SIZE, FakeVideoSource, ScriptedClassifier, SlowClassifier

from cardflo.api.schemas import DetectionResult
from cardflo.core.capture import AutoCaptureEngine, CaptureConfig, CaptureState
from cardflo.core.errors import CameraError, ClassifierError, FrameCaptureError
from cardflo.core.imaging import decode_image
from cardflo.core.sampler import FrameSampler

FAST = CaptureConfig(poll_interval=0.01)


def make_engine(source, classifier, config=None, on_state=None):
    return AutoCaptureEngine(FrameSampler(source), classifier, config=config, on_state=on_state)


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class TestFrameSampler:
    """Snapshot and still encoding."""

    def test_snapshot_is_half_resolution(self, video_source):
        sampler = FrameSampler(video_source)
        sampler.start()
        img = decode_image(sampler.snapshot())
        assert img.size == (FRAME_SIZE[0] // 2, FRAME_SIZE[1] // 2)
        assert img.format == "JPEG"

    def test_still_is_full_resolution(self, video_source):
        sampler = FrameSampler(video_source)
        sampler.start()
        assert decode_image(sampler.still()).size == FRAME_SIZE

    def test_each_snapshot_reads_a_new_frame(self, video_source):
        sampler = FrameSampler(video_source)
        sampler.start()
        sampler.snapshot()
        sampler.snapshot()
        assert video_source.read_count == 2

    def test_paused_sampler_refuses_reads(self, video_source):
        sampler = FrameSampler(video_source)
        sampler.start()
        sampler.pause()
        assert sampler.active is False
        assert video_source.is_open() is False
        with pytest.raises(FrameCaptureError):
            sampler.snapshot()

    def test_closed_camera_raises(self, video_source):
        sampler = FrameSampler(video_source)
        with pytest.raises(CameraError):
            sampler.still()


class TestTransitions:
    """Classifier verdicts drive the state machine."""

    def test_states_follow_verdicts(self, video_source):
        classifier = ScriptedClassifier([(False, False), (True, False), (False, False), (True, True)])
        engine = make_engine(video_source, classifier)

        async def scenario():
            await engine.start(poll=False)
            assert engine.state == CaptureState.IDLE

            await engine.tick()
            assert engine.state == CaptureState.IDLE
            await engine.tick()
            assert engine.state == CaptureState.DETECTING
            await engine.tick()
            assert engine.state == CaptureState.IDLE
            await engine.tick()
            assert engine.state == CaptureState.CAPTURING
            assert engine.session.captured
            await engine.close()

        asyncio.run(scenario())

    def test_classifier_error_keeps_state(self, video_source):
        classifier = ScriptedClassifier([(True, False), ClassifierError("HTTP 503"), (True, False)])
        engine = make_engine(video_source, classifier)

        async def scenario():
            await engine.start(poll=False)
            assert await engine.tick() is True
            assert engine.state == CaptureState.DETECTING
            assert await engine.tick() is False
            assert engine.state == CaptureState.DETECTING
            assert engine.in_flight is False
            assert await engine.tick() is True
            await engine.close()

        asyncio.run(scenario())

    def test_steady_without_card_is_idle(self, video_source):
        engine = make_engine(video_source, ScriptedClassifier([(False, True)]))

        async def scenario():
            await engine.start(poll=False)
            engine.apply_detection(DetectionResult(card_present=False, is_steady=True))
            assert engine.state == CaptureState.IDLE
            await engine.close()

        asyncio.run(scenario())

    def test_camera_failure_during_tick_closes_session(self, video_source):
        def broken_read():
            raise CameraError("device disconnected")

        video_source.read = broken_read
        engine = make_engine(video_source, ScriptedClassifier([(True, True)]))

        async def scenario():
            await engine.start(poll=False)
            await engine.tick()
            assert engine.state == CaptureState.CLOSED
            assert video_source.is_open() is False
            with pytest.raises(CameraError):
                await engine.wait_for_capture(timeout=1)

        asyncio.run(scenario())


class TestPolling:
    """Timer-driven classification."""

    def test_loop_captures_when_steady(self, video_source):
        states = []
        classifier = ScriptedClassifier([(False, False), (True, False), (True, True)])
        engine = make_engine(video_source, classifier, config=FAST, on_state=states.append)

        async def scenario():
            await engine.start()
            still = await engine.wait_for_capture(timeout=2)
            assert decode_image(still).size == FRAME_SIZE

            calls = classifier.calls
            await asyncio.sleep(0.1)
            assert classifier.calls == calls
            await engine.close()

        asyncio.run(scenario())
        assert states == [
            CaptureState.IDLE,
            CaptureState.DETECTING,
            CaptureState.STEADY,
            CaptureState.CAPTURING,
        ]

    def test_single_request_in_flight(self, video_source):
        classifier = SlowClassifier()
        engine = make_engine(video_source, classifier, config=FAST)

        async def scenario():
            await engine.start()
            await wait_until(lambda: engine.in_flight)
            # many poll intervals elapse while the first call is blocked
            await asyncio.sleep(0.15)
            assert classifier.calls == 1

            classifier.release.set()
            await wait_until(lambda: engine.state == CaptureState.DETECTING)
            await engine.close()

        asyncio.run(scenario())

    def test_restart_waits_for_outstanding_call(self, video_source):
        classifier = SlowClassifier()
        engine = make_engine(video_source, classifier, config=FAST)

        async def scenario():
            await engine.start()
            await wait_until(lambda: engine.in_flight)
            await engine.close()
            assert engine.in_flight is True

            await engine.start(poll=False)
            assert await engine.tick() is False
            assert classifier.calls == 1

            classifier.release.set()
            await wait_until(lambda: not engine.in_flight)
            assert engine.state == CaptureState.IDLE
            assert await engine.tick() is True
            assert classifier.calls == 2
            assert engine.state == CaptureState.DETECTING
            await engine.close()

        asyncio.run(scenario())

    def test_late_result_after_manual_capture_is_ignored(self, video_source):
        classifier = SlowClassifier(verdict=(True, True))
        engine = make_engine(video_source, classifier)

        async def scenario():
            await engine.start(poll=False)
            pending = asyncio.create_task(engine.tick())
            await wait_until(lambda: engine.in_flight)

            still = engine.capture_now()
            reads = video_source.read_count
            classifier.release.set()

            assert await pending is False
            assert engine.state == CaptureState.CAPTURING
            assert engine.session.still == still
            assert engine.session.manual is True
            assert video_source.read_count == reads
            await engine.close()

        asyncio.run(scenario())

    def test_hidden_view_skips_ticks(self, video_source):
        classifier = ScriptedClassifier([(True, False)])
        engine = make_engine(video_source, classifier)

        async def scenario():
            await engine.start(poll=False)
            engine.set_visible(False)
            assert video_source.release_count == 1
            assert await engine.tick() is False
            assert classifier.calls == 0

            engine.set_visible(True)
            assert video_source.open_count == 2
            assert await engine.tick() is True
            await engine.close()

        asyncio.run(scenario())


class TestManualCapture:

    def test_capture_now_returns_full_resolution(self, video_source):
        engine = make_engine(video_source, ScriptedClassifier([(False, False)]))

        async def scenario():
            await engine.start(poll=False)
            still = engine.capture_now()
            assert decode_image(still).size == FRAME_SIZE
            assert engine.capture_now() == still
            assert await engine.wait_for_capture(timeout=1) == still
            session = engine.handoff()
            assert session.manual is True
            assert engine.state == CaptureState.HANDED_OFF
            assert video_source.is_open() is False
            await engine.close()
            assert engine.state == CaptureState.HANDED_OFF

        asyncio.run(scenario())

    def test_capture_now_without_session(self, video_source):
        engine = make_engine(video_source, ScriptedClassifier([(False, False)]))
        with pytest.raises(RuntimeError):
            engine.capture_now()

    def test_handoff_requires_still(self, video_source):
        engine = make_engine(video_source, ScriptedClassifier([(False, False)]))

        async def scenario():
            await engine.start(poll=False)
            with pytest.raises(RuntimeError):
                engine.handoff()
            await engine.close()

        asyncio.run(scenario())


class TestLifecycle:
    """The camera is released on every exit path."""

    def test_camera_unavailable(self):
        source = FakeVideoSource(fail_open=True)
        engine = make_engine(source, ScriptedClassifier([(True, True)]))

        async def scenario():
            with pytest.raises(CameraError):
                await engine.start()

        asyncio.run(scenario())
        assert engine.state == CaptureState.CLOSED
        assert isinstance(engine.session.error, CameraError)

    def test_run_hands_off_and_releases(self, video_source):
        engine = make_engine(video_source, ScriptedClassifier([(True, True)]), config=FAST)
        session = asyncio.run(engine.run(timeout=2))
        assert session.state == CaptureState.HANDED_OFF
        assert session.still is not None
        assert video_source.is_open() is False
        assert video_source.release_count == 1

    def test_run_timeout_releases(self, video_source):
        engine = make_engine(video_source, ScriptedClassifier([(False, False)]), config=FAST)
        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(engine.run(timeout=0.05))
        assert video_source.is_open() is False
        assert engine.state == CaptureState.CLOSED

    def test_close_without_capture(self, video_source):
        engine = make_engine(video_source, ScriptedClassifier([(False, False)]), config=FAST)

        async def scenario():
            await engine.start()
            waiter = asyncio.create_task(engine.wait_for_capture())
            await asyncio.sleep(0.03)
            await engine.close()
            assert await waiter is None

        asyncio.run(scenario())
        assert engine.state == CaptureState.CLOSED
        assert video_source.is_open() is False

    def test_context_manager_releases(self, video_source):
        engine = make_engine(video_source, ScriptedClassifier([(True, False)]), config=FAST)

        async def scenario():
            async with engine:
                assert video_source.is_open()
            assert engine.state == CaptureState.CLOSED

        asyncio.run(scenario())
        assert video_source.is_open() is False

    def test_restart_after_close(self, video_source):
        engine = make_engine(video_source, ScriptedClassifier([(False, False)]))

        async def scenario():
            await engine.start(poll=False)
            with pytest.raises(RuntimeError):
                await engine.start(poll=False)
            await engine.close()
            await engine.start(poll=False)
            assert engine.state == CaptureState.IDLE
            await engine.close()

        asyncio.run(scenario())
        assert video_source.open_count == 2
