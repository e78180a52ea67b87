"""Pipecat processor that taps a host voice pipeline's caller transcriptions.

A host bot builds its own pipeline and drops the tap in after STT:

    from callscript.processor import start_call_script

    tap = await start_call_script(app.state.coordinator, call_sid, caller_phone)
    pipeline = Pipeline([transport.input(), stt, tap, context_aggregator.user(), llm, tts,
                         transport.output(), context_aggregator.assistant()])
"""
import logging
from pipecat.processors.frame_processor import FrameDirection, FrameProcessor
from pipecat.frames.frames import (
    Frame,
    TranscriptionFrame,
    EndFrame,
)

from callscript.realtime import CallScriptCoordinator

logger = logging.getLogger(__name__)


class CallScriptProcessor(FrameProcessor):
    """Pipecat tap that feeds final caller transcriptions to the call script.

    Sits right after STT in a voice pipeline:
      transport.input() -> STT -> [CallScriptProcessor] -> context_aggregator.user() -> LLM -> ...

    Every frame is pushed on unchanged; interim transcriptions are ignored.
    When end_on_close is set, an EndFrame also ends the call-script session.
    """

    def __init__(
        self,
        coordinator: CallScriptCoordinator,
        call_id: str,
        speaker: str = "caller",
        end_on_close: bool = False,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.coordinator = coordinator
        self.call_id = call_id
        self.speaker = speaker
        self.end_on_close = end_on_close
        self.chunks_forwarded = 0

    async def process_frame(self, frame: Frame, direction: FrameDirection):
        await super().process_frame(frame, direction)

        if isinstance(frame, TranscriptionFrame) and frame.text.strip():
            if self.coordinator.handle_transcript_chunk(self.call_id, frame.text.strip(), self.speaker):
                self.chunks_forwarded += 1
            else:
                logger.debug("[%s] Transcription dropped, no live call script", self.call_id)
        elif isinstance(frame, EndFrame) and self.end_on_close:
            await self.coordinator.end_call(self.call_id)

        await self.push_frame(frame, direction)


async def start_call_script(
    coordinator: CallScriptCoordinator,
    call_id: str,
    phone: str,
    end_on_close: bool = True,
    **kwargs,
) -> CallScriptProcessor:
    """Start (or rejoin) the call script for call_id and return its pipeline tap."""
    await coordinator.initialize_call(call_id, phone)
    logger.info("[%s] Call script attached to pipeline", call_id)
    return CallScriptProcessor(coordinator, call_id, end_on_close=end_on_close, **kwargs)
