#!/usr/bin/env python3
"""Interactive terminal client for the activity WebSocket.

Usage:
    ollama-relay-chat --name alice
    ollama-relay-chat --url ws://relay:8000/api/v1/ws/chat --model mistral

Anything typed is sent as a prompt and the answer streams live. Commands:
    /name <new name>     rename yourself
    /clients             list connected clients
    /broadcast <text>    message every other client
    quit | exit          leave
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import dataclass

import websockets

from ollama_relay.core.config import settings

QUIT_WORDS = {"quit", "exit"}
TURN_END_TYPES = {"stream_end", "stream_cancelled", "error"}
PRESENCE_TYPES = {"client_list", "client_name_changed", "client_disconnected"}


@dataclass
class Command:
    """One parsed line of user input."""

    kind: str  # chat | set_name | get_clients | broadcast | quit | empty
    text: str = ""


def parse_command(line: str) -> Command:
    stripped = line.strip()
    if not stripped:
        return Command("empty")
    if stripped.lower() in QUIT_WORDS:
        return Command("quit")
    word, *rest = stripped.split(maxsplit=1)
    argument = rest[0] if rest else ""
    if word == "/name":
        return Command("set_name", argument)
    if word == "/clients" and not argument:
        return Command("get_clients")
    if word == "/broadcast":
        return Command("broadcast", argument)
    return Command("chat", stripped)


def build_payload(command: Command, model: str | None = None) -> dict | None:
    """Wire message for a command, or None when nothing should be sent."""
    if command.kind == "chat":
        payload: dict = {"type": "chat", "prompt": command.text}
        if model:
            payload["model"] = model
        return payload
    if command.kind == "set_name":
        return {"type": "set_name", "name": command.text}
    if command.kind == "get_clients":
        return {"type": "get_clients"}
    if command.kind == "broadcast" and command.text:
        return {"type": "broadcast", "message": command.text}
    return None


def format_event(event: dict) -> str | None:
    """Render a server message for the terminal; None means print nothing."""
    kind = event.get("type")
    if kind == "stream":
        return event.get("content", "")
    if kind == "stream_end":
        stats = event.get("stats") or {}
        return f"\n\n[done: {stats.get('tokens', '?')} tokens, {stats.get('model', '?')}]\n"
    if kind == "stream_cancelled":
        return "\n[cancelled]\n"
    if kind == "welcome":
        return f"{event.get('message')} ({event.get('connected_clients')} connected)\n"
    if kind == "client_list":
        lines = ["Connected clients:"]
        for client in event.get("clients", []):
            marker = " (you)" if client.get("is_you") else ""
            lines.append(f"  #{client.get('id')} {client.get('name')}{marker}")
        return "\n".join(lines) + "\n"
    if kind == "name_set":
        return f"{event.get('message')}\n"
    if kind == "client_name_changed":
        return f"* {event.get('old_name')} is now {event.get('new_name')}\n"
    if kind == "user_broadcast":
        return f"[{event.get('from_name')}] {event.get('message')}\n"
    if kind == "broadcast_sent":
        return None
    if kind == "client_disconnected":
        return f"* {event.get('message')}\n"
    if kind == "server_shutdown":
        return f"! {event.get('message')}\n"
    if kind == "error":
        return f"\nError ({event.get('code')}): {event.get('detail')}\n"
    return None


class ChatSession:
    """Prompt loop plus a background reader on one connection."""

    def __init__(
        self,
        url: str,
        name: str | None,
        model: str | None,
        show_presence: bool,
        turn_timeout: float | None = None,
    ) -> None:
        self._url = url
        self._name = name
        self._model = model
        self._show_presence = show_presence
        self._turn_timeout = turn_timeout
        self._turn_done = asyncio.Event()

    async def run(self) -> int:
        try:
            async with websockets.connect(self._url) as ws:
                print(f"Connected to {self._url}")
                if self._name:
                    await ws.send(json.dumps({"type": "set_name", "name": self._name}))

                reader = asyncio.create_task(self._read(ws))
                try:
                    await self._prompt_loop(ws, reader)
                finally:
                    reader.cancel()
        except (OSError, websockets.InvalidURI, websockets.InvalidHandshake) as exc:
            print(f"Cannot connect to {self._url}: {exc}", file=sys.stderr)
            return 1
        except websockets.ConnectionClosed:
            print("\nConnection closed.")
        return 0

    async def _read(self, ws) -> None:
        async for raw in ws:
            try:
                event = json.loads(raw)
            except json.JSONDecodeError:
                continue
            kind = event.get("type")
            hidden = not self._show_presence and kind in PRESENCE_TYPES
            text = None if hidden else format_event(event)
            if text is not None:
                sys.stdout.write(text)
                sys.stdout.flush()
            if kind in TURN_END_TYPES:
                self._turn_done.set()
        # Server went away: release a prompt waiting on a turn.
        self._turn_done.set()

    async def _prompt_loop(self, ws, reader: asyncio.Task) -> None:
        while not reader.done():
            line = await asyncio.to_thread(input, "> ")
            command = parse_command(line)
            if command.kind == "quit":
                print("Goodbye!")
                return
            payload = build_payload(command, self._model)
            if payload is None:
                continue

            self._turn_done.clear()
            await ws.send(json.dumps(payload))
            if command.kind == "chat":
                await self.wait_for_turn(ws)

    async def wait_for_turn(self, ws) -> bool:
        """
        Block until the running generation ends. On timeout the generation is
        cancelled server-side and False is returned.
        """
        try:
            await asyncio.wait_for(self._turn_done.wait(), self._turn_timeout)
        except asyncio.TimeoutError:
            print(f"\n[no reply after {self._turn_timeout:g}s, cancelling]")
            await ws.send(json.dumps({"type": "cancel"}))
            return False
        return True


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Chat with an Ollama model through the relay.")
    parser.add_argument(
        "--url",
        default=f"ws://localhost:{settings.UVICORN_PORT}/api/v1/ws/chat",
        help="Activity WebSocket URL",
    )
    parser.add_argument("--name", default=None, help="Display name announced to other clients")
    parser.add_argument("--model", default=None, help="Model override (default: server's OLLAMA_MODEL)")
    parser.add_argument(
        "--quiet-presence",
        action="store_true",
        help="Hide client list and join/leave notices",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=float(settings.OLLAMA_TIMEOUT_SECONDS),
        help="Seconds to wait for a generation before cancelling it (0 waits forever)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    session = ChatSession(
        args.url,
        args.name,
        args.model,
        show_presence=not args.quiet_presence,
        turn_timeout=args.timeout or None,
    )
    try:
        return asyncio.run(session.run())
    except (KeyboardInterrupt, EOFError):
        print("\nGoodbye!")
        return 0


if __name__ == "__main__":
    sys.exit(main())
