import asyncio
import httpx
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from callscript.circuit_breaker import CircuitBreaker
from callscript.debounce import DebounceTimer
from callscript.segments import MAX_PATTERN_CONFIDENCE, SEGMENT_CONFIGS, get_default_destination
from callscript.states import Destination, Segment, parse_enum
from callscript.transcript import caller_text, extract_caller_speech, transcript_to_string  # noqa: F401
from callscript.validation import find_keywords

logger = logging.getLogger(__name__)

DEFAULT_TIER1_MIN_CONFIDENCE = 70
DEFAULT_DEBOUNCE_MS = 500
MAX_ALTERNATES = 3

# Returned when nothing matched at all
FALLBACK_SEGMENT = Segment.BUSY_PRO
FALLBACK_CONFIDENCE = 20


@dataclass
class SegmentMatch:
    segment: Segment
    confidence: int
    signals: list[str] = field(default_factory=list)
    tier: int = 1
    reasoning: str | None = None
    is_fallback: bool = False

    def to_json(self) -> dict:
        return {
            "segment": self.segment.value,
            "confidence": self.confidence,
            "signals": list(self.signals),
            "tier": self.tier,
            "reasoning": self.reasoning,
        }


@dataclass
class ClassifierOutput:
    primary: SegmentMatch
    alternates: list[SegmentMatch] = field(default_factory=list)
    processing_time_ms: float = 0.0

    def to_json(self) -> dict:
        return {
            "primary": self.primary.to_json(),
            "alternates": [a.to_json() for a in self.alternates],
            "processingTimeMs": round(self.processing_time_ms, 2),
        }


def tier1_pattern_match(text: str) -> list[SegmentMatch]:
    """Score text against every segment's weighted phrase table.

    Confidence is the sum of the weights of the distinct phrases found, capped
    at 95. Segments with no matches are left out. Sorted best first; ties keep
    the table order.
    """
    if not text or not text.strip():
        return []
    results = []
    for config in SEGMENT_CONFIGS.values():
        weights = dict(config.signals)
        matched = find_keywords(text, config.signal_phrases)
        if not matched:
            continue
        confidence = min(sum(weights[phrase] for phrase in matched), MAX_PATTERN_CONFIDENCE)
        results.append(SegmentMatch(segment=config.segment, confidence=confidence, signals=matched))
    results.sort(key=lambda m: m.confidence, reverse=True)
    return results


def check_disqualifying_signals(text: str, segment: Segment | str) -> list[str]:
    """Phrases in text that contradict membership in `segment`. Advisory only."""
    parsed = parse_enum(Segment, segment)
    if not text or parsed is None:
        return []
    return find_keywords(text, SEGMENT_CONFIGS[parsed].disqualifiers)


def _fallback_match() -> SegmentMatch:
    return SegmentMatch(segment=FALLBACK_SEGMENT, confidence=FALLBACK_CONFIDENCE, is_fallback=True)


def _output_from_tier1(matches: list[SegmentMatch], started: float) -> ClassifierOutput:
    primary = matches[0] if matches else _fallback_match()
    return ClassifierOutput(
        primary=primary,
        alternates=matches[1:1 + MAX_ALTERNATES],
        processing_time_ms=(time.perf_counter() - started) * 1000,
    )


def classify_segment_sync(transcript) -> ClassifierOutput:
    """Tier-1 only. Accepts a flat string or speaker-tagged entries."""
    started = time.perf_counter()
    return _output_from_tier1(tier1_pattern_match(caller_text(transcript)), started)


class Tier2Classifier(Protocol):
    async def classify(self, text: str) -> SegmentMatch | None:
        """Return a match or None when no confident answer is available."""


TIER2_PROMPT = """You are classifying a customer call for a handyman service. Based on the transcript, identify the customer segment.

SEGMENTS:
- LANDLORD: Owns rental property, may have tenants, often remote from property
- BUSY_PRO: Working professional, time-poor, needs flexibility, has key safe
- PROP_MGR: Property manager/agency, manages multiple properties, wants account/SLA
- OAP: Elderly/trust-seeker, values safety and trust, may live alone, wants to meet first
- SMALL_BIZ: Business owner (shop, restaurant, cafe), needs after-hours, minimal disruption
- EMERGENCY: Urgent issue (flooding, no heating, locked out, sparks) - needs immediate help
- BUDGET: Price-focused, asking about hourly rates, wants cheapest option

Return ONLY a JSON object:
{"segment": "SEGMENT_NAME", "confidence": 0-100, "signals": ["signal1", "signal2"], "reasoning": "brief explanation"}"""


class OpenAITier2Classifier:
    """Semantic fallback backed by an OpenAI chat model.

    Wrapped in a circuit breaker: after 3 consecutive failures the model is
    skipped for 60s and callers get None, so tier-1 results are used instead.
    """

    URL = "https://api.openai.com/v1/chat/completions"

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: float = 5.0):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="tier-2 classifier",
        )

    async def classify(self, text: str) -> SegmentMatch | None:
        if not self.api_key or not text.strip():
            return None
        if not self._circuit.should_try():
            logger.warning("Tier-2 circuit breaker open, skipping semantic classification")
            return None

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(
                    self.URL,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json={
                        "model": self.model,
                        "temperature": 0.1,
                        "max_tokens": 200,
                        "response_format": {"type": "json_object"},
                        "messages": [
                            {"role": "system", "content": TIER2_PROMPT},
                            {"role": "user", "content": f"TRANSCRIPT:\n{text[-3000:]}"},
                        ],
                    },
                )
                resp.raise_for_status()
                content = resp.json()["choices"][0]["message"]["content"]
                data = json.loads(content)
        except Exception as e:
            self._circuit.record_failure()
            logger.warning("Tier-2 classification failed: %s", e)
            return None

        self._circuit.record_success()
        segment = parse_enum(Segment, data.get("segment"))
        if segment is None:
            logger.warning("Tier-2 returned unknown segment %r", data.get("segment"))
            return None
        try:
            confidence = int(data.get("confidence", 0))
        except (TypeError, ValueError):
            confidence = 0
        signals = data.get("signals") or []
        if not isinstance(signals, list):
            signals = []
        return SegmentMatch(
            segment=segment,
            confidence=max(0, min(MAX_PATTERN_CONFIDENCE, confidence)),
            signals=[str(s) for s in signals][:10],
            tier=2,
            reasoning=str(data["reasoning"])[:300] if data.get("reasoning") else None,
        )


async def classify_segment(
    transcript,
    tier2: Tier2Classifier | None = None,
    tier1_min_confidence: int = DEFAULT_TIER1_MIN_CONFIDENCE,
) -> ClassifierOutput:
    """Tier 1 first; ask tier 2 only when tier 1 is unsure.

    The tier-1 best guess stands whenever tier 2 is absent, fails, or
    returns nothing usable.
    """
    started = time.perf_counter()
    text = caller_text(transcript)
    matches = tier1_pattern_match(text)

    if (matches and matches[0].confidence >= tier1_min_confidence) or tier2 is None:
        return _output_from_tier1(matches, started)

    try:
        semantic = await tier2.classify(text)
    except Exception:
        logger.exception("Tier-2 classifier raised")
        semantic = None

    if semantic is None:
        return _output_from_tier1(matches, started)

    alternates = [m for m in matches if m.segment != semantic.segment][:MAX_ALTERNATES]
    return ClassifierOutput(
        primary=semantic,
        alternates=alternates,
        processing_time_ms=(time.perf_counter() - started) * 1000,
    )


def get_destination_for_segment(segment: Segment | str | None) -> Destination:
    parsed = parse_enum(Segment, segment)
    if parsed is None:
        return Destination.INSTANT_QUOTE
    return get_default_destination(parsed)


class StreamingClassifier:
    """Re-classifies the whole accumulated transcript after a quiet period.

    Chunks arrive in bursts while someone is talking; each add_chunk() restarts
    the debounce timer, so a burst costs one classification. on_update fires
    only when the segment changes or the confidence goes up.
    """

    def __init__(
        self,
        on_update: Callable[[ClassifierOutput], Awaitable[None] | None] | None = None,
        use_tier2: bool = True,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        tier1_min_confidence: int = DEFAULT_TIER1_MIN_CONFIDENCE,
        tier2: Tier2Classifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._on_update = on_update
        self.use_tier2 = use_tier2
        self.tier1_min_confidence = tier1_min_confidence
        self._tier2 = tier2
        self._chunks: list[str] = []
        self._last: ClassifierOutput | None = None
        self._timer = DebounceTimer(debounce_ms / 1000, self._run, sleep=sleep, label="segment classifier")

    def add_chunk(self, text: str) -> None:
        if not text or not text.strip():
            return
        self._chunks.append(text.strip())
        self._timer.reset()

    def get_current_classification(self) -> ClassifierOutput | None:
        return self._last

    def get_accumulated_transcript(self) -> str:
        return " ".join(self._chunks)

    @property
    def pending(self) -> bool:
        return self._timer.pending

    async def flush(self) -> bool:
        """Run a pending classification now instead of waiting out the window."""
        return await self._timer.flush()

    def reset(self) -> None:
        self._timer.cancel()
        self._chunks = []
        self._last = None

    async def _run(self):
        text = self.get_accumulated_transcript()
        result = await classify_segment(
            text,
            tier2=self._tier2 if self.use_tier2 else None,
            tier1_min_confidence=self.tier1_min_confidence,
        )
        # The transcript may have been reset while tier 2 was in flight
        if text != self.get_accumulated_transcript():
            return
        if result.primary.is_fallback:
            return
        last = self._last
        if last is not None and last.primary.segment == result.primary.segment \
                and result.primary.confidence <= last.primary.confidence:
            return
        self._last = result
        if self._on_update is not None:
            outcome = self._on_update(result)
            if asyncio.iscoroutine(outcome):
                await outcome
