"""Helpers for speaker-tagged transcript entries.

An entry is a dict with "speaker" and "text" keys, e.g.
{"speaker": "caller", "text": "My boiler's broken"}. Live transcription
labels the caller as "inbound" and the agent as "outbound", so both
naming schemes are accepted.
"""

CALLER_SPEAKERS = {"caller", "inbound", "customer", "user"}
AGENT_SPEAKERS = {"agent", "outbound", "assistant"}


def is_caller(speaker: str | None) -> bool:
    if not speaker:
        return False
    return speaker.strip().lower() in CALLER_SPEAKERS


def _entry_text(entry) -> str:
    if isinstance(entry, dict):
        return str(entry.get("text") or "").strip()
    return str(getattr(entry, "text", "") or "").strip()


def _entry_speaker(entry) -> str:
    if isinstance(entry, dict):
        return str(entry.get("speaker") or "")
    return str(getattr(entry, "speaker", "") or "")


def extract_caller_speech(entries: list) -> str:
    """Join only the caller's turns, so agent script wording can't skew matching."""
    if not entries:
        return ""
    return " ".join(
        _entry_text(e) for e in entries
        if is_caller(_entry_speaker(e)) and _entry_text(e)
    )


def transcript_to_string(entries: list) -> str:
    """Render entries as "speaker: text" lines."""
    if not entries:
        return ""
    lines = []
    for entry in entries:
        text = _entry_text(entry)
        if not text:
            continue
        lines.append(f"{_entry_speaker(entry) or 'unknown'}: {text}")
    return "\n".join(lines)


def caller_text(transcript) -> str:
    """Accept a flat string or a list of entries and return what the caller said."""
    if transcript is None:
        return ""
    if isinstance(transcript, str):
        return transcript
    return extract_caller_speech(transcript)
