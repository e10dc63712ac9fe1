"""Application entry point: a JSON-lines key agent on stdin/stdout.

Each input line is one of:

- a request: ``{"id": 1, "type": "signEvent", "params": {...}, "host": "a.com"}``
- a prompt answer: ``{"prompt": "<id>", "accept": true, "remember": {"kinds": [1]}}``
  (omit ``remember`` for a one-off answer; ``{}`` remembers unconditionally)
- a window closure: ``{"prompt": "<id>", "closed": true}``

Output lines are replies ``{"id": 1, "result": ...}`` / ``{"id": 1, "error": {...}}``
and prompts ``{"prompt": {...}}`` for the UI to answer.

    nos2bch [--config path/to/config.yaml]
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import TYPE_CHECKING, Any, TextIO

from nos2bch.agent import KeyAgent
from nos2bch.broker.broker import PromptResponse
from nos2bch.config.settings import AppConfig
from nos2bch.dispatcher.operations import describe_operation
from nos2bch.errors import AgentError
from nos2bch.policy.conditions import Condition

if TYPE_CHECKING:
    from nos2bch.broker.broker import PendingPrompt

logger = logging.getLogger(__name__)


class JsonLinesPromptSurface:
    """Writes prompts to the output stream; answers come back on input."""

    def __init__(self, out: TextIO) -> None:
        self._out = out

    async def open(self, prompt: PendingPrompt) -> None:  # noqa: ASYNC910
        _write(self._out, {"prompt": {**prompt.to_dict(), "description": describe_operation(prompt.operation)}})


def _write(out: TextIO, message: dict[str, Any]) -> None:
    out.write(json.dumps(message, separators=(",", ":")) + "\n")
    out.flush()


async def _answer(agent: KeyAgent, message: dict[str, Any], out: TextIO) -> None:
    prompt_id = str(message["prompt"])
    if message.get("closed"):
        agent.broker.on_window_closed(prompt_id=prompt_id)
        return
    try:
        condition = Condition.from_dict(message["remember"]) if "remember" in message else None
    except AgentError as exc:
        logger.warning("Bad answer for prompt %s: %s", prompt_id, exc.message)
        _write(out, {"id": None, "error": exc.to_dict()})
        return
    response = PromptResponse(accept=bool(message.get("accept")), condition=condition)
    if not agent.broker.resolve_prompt(response, prompt_id=prompt_id):
        logger.warning("No pending prompt %s", prompt_id)


async def _reply(agent: KeyAgent, message: dict[str, Any], out: TextIO) -> None:
    result = await agent.handle(message)
    _write(out, {"id": message.get("id"), **result.to_dict()})


async def serve(config: AppConfig, inp: TextIO = sys.stdin, out: TextIO = sys.stdout) -> None:
    """Run the agent until the input stream is exhausted."""
    agent = KeyAgent(config, JsonLinesPromptSurface(out))
    await agent.initialize()
    tasks: set[asyncio.Task[None]] = set()
    try:
        while True:
            line = await asyncio.to_thread(inp.readline)
            if not line:
                break
            if not line.strip():
                continue
            try:
                message = json.loads(line)
            except ValueError:
                _write(out, {"id": None, "error": {"message": "invalid JSON", "code": "invalid-request"}})
                continue
            if isinstance(message, dict) and "prompt" in message:
                await _answer(agent, message, out)
                continue
            task = asyncio.create_task(_reply(agent, message if isinstance(message, dict) else {}, out))
            tasks.add(task)
            task.add_done_callback(tasks.discard)
        # Input closed: nobody is left to answer prompts.
        while tasks:
            agent.broker.on_window_closed()
            await asyncio.wait(set(tasks), timeout=0.1)
    finally:
        await agent.close()


def main() -> None:
    """CLI entry point."""
    args = sys.argv[1:]
    config_path = ""
    if args[:1] == ["--config"]:
        if len(args) < 2:
            print("Usage: nos2bch [--config path]", file=sys.stderr)
            sys.exit(1)
        config_path = args[1]
    elif args:
        print(__doc__, file=sys.stderr)
        sys.exit(1)

    config = AppConfig(config_path=config_path) if config_path else AppConfig()
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()
