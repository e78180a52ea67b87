#!/usr/bin/env python3
"""Drive a simulated call through a running call-script server.

Usage:
    python scripts/simulate_call.py "Hi, I'm a landlord" "tenant says the boiler is broken"
    python scripts/simulate_call.py --file call.txt --delay 0.5
    python scripts/simulate_call.py --file call.txt --action confirm_station \
        --action 'select_segment:{"segment": "LANDLORD"}'
    python scripts/simulate_call.py --url http://localhost:8765 --raw "flooding everywhere"
"""

import argparse
import asyncio
import json
import sys

import aiohttp

DEFAULT_URL = "http://localhost:8765"
# Leave the server's debounce window time to classify before the summary
SETTLE_SECONDS = 1.0


def load_lines(args_lines: list[str], path: str | None = None) -> list[str]:
    """Transcript lines from the command line, then from the file (one per line)."""
    lines = [line.strip() for line in args_lines if line.strip()]
    if path:
        with open(path, encoding="utf-8") as f:
            lines.extend(line.strip() for line in f if line.strip())
    return lines


def parse_action(raw: str) -> tuple[str, dict]:
    """`name` or `name:{json payload}`."""
    name, sep, payload = raw.partition(":")
    name = name.strip()
    if not name:
        raise ValueError(f"Empty action in {raw!r}")
    if not sep or not payload.strip():
        return name, {}
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError(f"Payload for {name} must be a JSON object")
    return name, data


def format_state(state: dict) -> str:
    info = state.get("capturedInfo") or {}
    lines = [
        f"=== {state.get('callId')} ===",
        f"Station:     {state.get('currentStation')}  (done: {', '.join(state.get('completedStations') or []) or '-'})",
        f"Segment:     {state.get('detectedSegment') or '-'} @ {state.get('segmentConfidence', 0)}%",
    ]
    if state.get("segmentSignals"):
        lines.append(f"Signals:     {', '.join(state['segmentSignals'])}")
    for key in ("job", "postcode", "name", "contact", "isDecisionMaker", "isRemote", "hasTenant"):
        value = info.get(key)
        if value is not None:
            lines.append(f"  {key:<16} {value}")
    qualified = state.get("isQualified")
    lines.append(f"Qualified:   {'-' if qualified is None else qualified}")
    lines.append(
        f"Destination: {state.get('selectedDestination') or '-'} "
        f"(recommended {state.get('recommendedDestination') or '-'})"
    )
    if state.get("currentJourneyStation"):
        lines.append(f"Journey:     {' > '.join(state.get('journeyPath') or [])}")
    return "\n".join(lines)


async def _post(session: aiohttp.ClientSession, url: str, body: dict) -> dict:
    async with session.post(url, json=body) as resp:
        data = await resp.json()
        if resp.status >= 400 or not data.get("success"):
            raise RuntimeError(f"POST {url} failed ({resp.status}): {data.get('error')}")
        return data


async def run(
    base_url: str,
    phone: str | None,
    lines: list[str],
    actions: list[tuple[str, dict]],
    delay: float = 0.0,
    session: aiohttp.ClientSession | None = None,
) -> dict:
    """Start the call, feed lines, apply actions. Returns the final state."""
    own_session = session is None
    session = session or aiohttp.ClientSession()
    api = f"{base_url.rstrip('/')}/api/call-script"
    try:
        started = await _post(session, f"{api}/simulate", {"phone": phone})
        call_id = started["callId"]
        for line in lines:
            await _post(session, f"{api}/simulate/{call_id}/transcript", {"text": line})
            if delay:
                await asyncio.sleep(delay)
        if lines:
            await asyncio.sleep(SETTLE_SECONDS)

        for name, payload in actions:
            await _post(session, f"{api}/session/{call_id}/action", {"action": name, "payload": payload})

        async with session.get(f"{api}/session/{call_id}") as resp:
            return (await resp.json())["state"]
    finally:
        if own_session:
            await session.close()


def main():
    parser = argparse.ArgumentParser(description="Simulate a call against the call-script API")
    parser.add_argument("lines", nargs="*", help="Caller transcript lines")
    parser.add_argument("--file", type=str, default=None, help="Read caller lines from a file")
    parser.add_argument("--url", type=str, default=DEFAULT_URL, help=f"Server base URL (default: {DEFAULT_URL})")
    parser.add_argument("--phone", type=str, default=None, help="Caller phone number")
    parser.add_argument("--delay", type=float, default=0.0, help="Seconds between lines")
    parser.add_argument("--action", action="append", default=[], help="Agent action, name or name:{json}")
    parser.add_argument("--raw", action="store_true", help="Print the final state as JSON")
    args = parser.parse_args()

    try:
        lines = load_lines(args.lines, args.file)
        actions = [parse_action(a) for a in args.action]
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    try:
        state = asyncio.run(run(args.url, args.phone, lines, actions, args.delay))
    except (aiohttp.ClientError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.raw:
        print(json.dumps(state, indent=2))
    else:
        print(format_state(state))


if __name__ == "__main__":
    main()
