"""Terminal chat: stream replies from Gemini into the console.

Demonstrates:
- Loading a ClientConfig from config.json or the environment
- Running exchanges with ChatSession.submit and printing fragments live
- Choosing what happens to the user turn of a failed exchange
- Optional OpenTelemetry tracing

Usage:
    uv run --env-file=.env examples/terminal_chat.py
    uv run examples/terminal_chat.py --config config.json --model gemini-2.5-flash --rollback --trace

Lines starting with ``:`` are local commands: ``:clear``, ``:model NAME``,
``:history`` and ``:config``.
"""

import argparse
import asyncio
import sys

from geminal.config import ClientConfig
from geminal.log import setup_logging
from geminal.session import ChatSession, FailurePolicy


def setup_tracing(service_name: str):
    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        SimpleSpanProcessor, ConsoleSpanExporter,
    )
    from geminal.instrumentation import instrument

    provider = TracerProvider(
        resource=Resource({SERVICE_NAME: service_name})
    )
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    instrument()


def write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def handle_command(session: ChatSession, line: str) -> None:
    name, _, arg = line[1:].partition(" ")
    if name == "clear":
        session.reset()
        print("Conversation history cleared.")
    elif name == "model" and arg:
        session.switch_model(arg.strip())
        print(f"Model changed to: {session.config.model} (history cleared)")
    elif name == "model":
        print(f"Current model: {session.config.model}")
    elif name == "history":
        for turn in session.history():
            print(f"[{turn.role.value}] {turn.text}")
    elif name == "config":
        print(session.config.describe())
    else:
        print(f"Unknown command: {name}")


async def main():
    parser = argparse.ArgumentParser(description="Gemini terminal chat")
    parser.add_argument("--config", default=None, help="Path to config.json")
    parser.add_argument("--model", default=None)
    parser.add_argument("--rollback", action="store_true",
                        help="Drop the user turn of a failed exchange")
    parser.add_argument("--trace", action="store_true")
    parser.add_argument("--log-file", default="geminal.log")
    args = parser.parse_args()

    setup_logging(args.log_file)
    if args.trace:
        setup_tracing("geminal-terminal")

    config = ClientConfig.from_file(args.config) if args.config else ClientConfig.from_env()
    if args.model:
        config = config.model_copy(update={"model": args.model})

    policy = FailurePolicy.ROLLBACK if args.rollback else FailurePolicy.KEEP_USER_TURN
    session = ChatSession(config, failure_policy=policy)

    print(f"Gemini terminal ({config.model})\n")
    if not config.is_configured:
        print("Warning: API key not configured\n")

    while True:
        try:
            user_input = input("> ")
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if not user_input.strip():
            continue
        if user_input.startswith(":"):
            handle_command(session, user_input)
            continue

        await session.submit(
            user_input,
            on_fragment=write,
            on_complete=lambda text: write("\n\n"),
            on_error=lambda message: write(f"\nError: {message}\n\n"),
        )


if __name__ == "__main__":
    asyncio.run(main())
