"""
Command-line interface for Mosaik.

Usage:
    mosaik models --provider ollama
    mosaik chat --provider anthropic --model claude-sonnet-4-20250514 "Explain DAGs"
    mosaik run notes.md --provider ollama --model llama3 --system "Summarise" --export summary.md
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from mosaik.config import load_engine_config
from mosaik.graph.node import NodeKind
from mosaik.observability import configure_logging
from mosaik.runtime.engine import WorkflowEngine
from mosaik.runtime.event_bus import EventType
from mosaik.runtime.run_context import RunResult

logger = logging.getLogger(__name__)


def _build_engine(args: argparse.Namespace) -> WorkflowEngine:
    config = load_engine_config(Path(args.config) if args.config else None)
    return WorkflowEngine.from_config(config)


async def _stream_run(engine: WorkflowEngine, run_id: str, node_id: str) -> RunResult:
    """Print fragments of ``node_id`` while the run progresses."""
    subscription = engine.subscribe(
        event_types=[EventType.NODE_FRAGMENT, EventType.NODE_FAILED, EventType.RUN_FINISHED],
        run_id=run_id,
    )
    try:
        async for event in subscription:
            if event.type == EventType.NODE_FRAGMENT and event.node_id == node_id:
                sys.stdout.write(event.fragment or "")
                sys.stdout.flush()
            elif event.type == EventType.NODE_FAILED:
                print(f"\n[{event.node_id} failed: {event.data.get('reason')}] {event.data.get('error', '')}")
            elif event.type == EventType.RUN_FINISHED:
                break
    finally:
        engine.event_bus.unsubscribe(subscription.id)
    print()
    return await engine.wait_for_run(run_id)


def _add_chat_node(engine: WorkflowEngine, args: argparse.Namespace) -> str:
    return engine.create_node(
        NodeKind.CHAT,
        title="chat",
        provider=args.provider,
        model=args.model,
        system_prompt=args.system or "",
        thinking=args.thinking,
    )


async def _cmd_models(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    adapter = engine.registry.get(args.provider)
    if adapter is None:
        print(f"Unknown provider '{args.provider}'", file=sys.stderr)
        return 1
    for model in await adapter.list_models():
        print(model)
    return 0


async def _cmd_chat(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    chat = _add_chat_node(engine, args)
    run_id = await engine.send_message(chat, args.prompt)
    result = await _stream_run(engine, run_id, chat)
    return 0 if result and result.success else 1


async def _cmd_run(args: argparse.Namespace) -> int:
    engine = _build_engine(args)
    source = engine.import_file(args.file)
    chat = _add_chat_node(engine, args)
    engine.connect(source, chat)

    run_id = await engine.trigger_run()
    result = await _stream_run(engine, run_id, chat)
    if result is None or not result.success:
        return 1
    if args.export:
        path = engine.export_node(chat, args.export)
        print(f"Exported to {path}")
    return 0


def _add_provider_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--provider", required=True, help="Provider id (ollama, anthropic, ...)")
    parser.add_argument("--model", default=None, help="Model name (provider default when omitted)")
    parser.add_argument("--system", default=None, help="System prompt")
    parser.add_argument("--thinking", action="store_true", help="Request extended reasoning")


def main():
    parser = argparse.ArgumentParser(
        prog="mosaik",
        description="Mosaik - run LLM node workflows",
    )
    parser.add_argument("--config", default=None, help="Configuration file (default ~/.mosaik/configuration.json)")
    parser.add_argument("--log-level", default="WARNING", help="Log level")
    parser.add_argument("--log-format", default="auto", choices=["auto", "json", "human"])

    subparsers = parser.add_subparsers(dest="command", required=True)

    models = subparsers.add_parser("models", help="List models a provider serves")
    models.add_argument("--provider", required=True)
    models.set_defaults(func=_cmd_models)

    chat = subparsers.add_parser("chat", help="Send one message to a model")
    _add_provider_args(chat)
    chat.add_argument("prompt", help="Message to send")
    chat.set_defaults(func=_cmd_chat)

    run = subparsers.add_parser("run", help="Feed a txt/md file to a model")
    _add_provider_args(run)
    run.add_argument("file", help="Input file (.txt or .md)")
    run.add_argument("--export", default=None, help="Write the response to this .txt/.md file")
    run.set_defaults(func=_cmd_run)

    args = parser.parse_args()
    configure_logging(level=args.log_level, format=args.log_format)

    if hasattr(args, "func"):
        sys.exit(asyncio.run(args.func(args)))


if __name__ == "__main__":
    main()
