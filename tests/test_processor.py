import pytest
from unittest.mock import AsyncMock, MagicMock

from pipecat.frames.frames import EndFrame, InterimTranscriptionFrame, TranscriptionFrame
from pipecat.processors.frame_processor import FrameDirection

from callscript.processor import CallScriptProcessor, start_call_script
from callscript.realtime import CallScriptCoordinator

from conftest import never_sleep


@pytest.fixture
def coordinator():
    coordinator = MagicMock()
    coordinator.handle_transcript_chunk.return_value = True
    coordinator.end_call = AsyncMock(return_value={"callId": "c1"})
    return coordinator


@pytest.fixture
def processor(coordinator):
    proc = CallScriptProcessor(coordinator, "c1")
    # Mock push_frame to capture output
    proc.push_frame = AsyncMock()
    return proc


class TestCallScriptProcessor:
    @pytest.mark.asyncio
    async def test_final_transcription_forwarded(self, processor, coordinator):
        frame = TranscriptionFrame(text="  my boiler is leaking ", user_id="", timestamp="")
        await processor.process_frame(frame, FrameDirection.DOWNSTREAM)
        coordinator.handle_transcript_chunk.assert_called_once_with("c1", "my boiler is leaking", "caller")
        processor.push_frame.assert_awaited_once_with(frame, FrameDirection.DOWNSTREAM)
        assert processor.chunks_forwarded == 1

    @pytest.mark.asyncio
    async def test_interim_and_blank_ignored(self, processor, coordinator):
        await processor.process_frame(
            InterimTranscriptionFrame(text="my boil", user_id="", timestamp=""),
            FrameDirection.DOWNSTREAM,
        )
        await processor.process_frame(
            TranscriptionFrame(text="   ", user_id="", timestamp=""),
            FrameDirection.DOWNSTREAM,
        )
        coordinator.handle_transcript_chunk.assert_not_called()
        assert processor.push_frame.await_count == 2

    @pytest.mark.asyncio
    async def test_no_live_call(self, processor, coordinator):
        coordinator.handle_transcript_chunk.return_value = False
        await processor.process_frame(
            TranscriptionFrame(text="hello", user_id="", timestamp=""),
            FrameDirection.DOWNSTREAM,
        )
        assert processor.chunks_forwarded == 0
        processor.push_frame.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_end_frame_passes_through_by_default(self, processor, coordinator):
        await processor.process_frame(EndFrame(), FrameDirection.DOWNSTREAM)
        coordinator.end_call.assert_not_awaited()
        processor.push_frame.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_end_frame_ends_call_when_asked(self, coordinator):
        proc = CallScriptProcessor(coordinator, "c1", speaker="inbound", end_on_close=True)
        proc.push_frame = AsyncMock()
        await proc.process_frame(EndFrame(), FrameDirection.DOWNSTREAM)
        coordinator.end_call.assert_awaited_once_with("c1")
        proc.push_frame.assert_awaited_once()


class TestStartCallScript:
    @pytest.mark.asyncio
    async def test_tap_drives_a_live_call_script(self, manager, store):
        coordinator = CallScriptCoordinator(manager, sleep=never_sleep)
        tap = await start_call_script(coordinator, "c1", "+44 1")
        tap.push_frame = AsyncMock()
        assert coordinator.has_call("c1")

        await tap.process_frame(
            TranscriptionFrame(text="my boiler is leaking", user_id="", timestamp=""),
            FrameDirection.DOWNSTREAM,
        )
        assert tap.chunks_forwarded == 1

        await tap.process_frame(EndFrame(), FrameDirection.DOWNSTREAM)
        assert not coordinator.has_call("c1")
        assert not manager.has_session("c1")
        assert "c1" in store.rows
        assert tap.push_frame.await_count == 2

    @pytest.mark.asyncio
    async def test_initializes_call_before_returning_tap(self, coordinator):
        coordinator.initialize_call = AsyncMock()
        tap = await start_call_script(coordinator, "c1", "+44 1", end_on_close=False)
        coordinator.initialize_call.assert_awaited_once_with("c1", "+44 1")
        assert tap.call_id == "c1"
        assert not tap.end_on_close
