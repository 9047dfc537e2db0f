"""CLI entry point for think-tank."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from dataclasses import replace

from think_tank.app import ThinkTankApp, build_pricing_table
from think_tank.config import AppConfig, load_config
from think_tank.core.errors import ThinkTankError
from think_tank.core.models import ChatMessage, Persona
from think_tank.core.types import ConversationMode, GroupBy, Role
from think_tank.log import setup_logging
from think_tank.routing.mentions import enhance_system_prompt
from think_tank.routing.turns import ConversationTurns, create_policy
from think_tank.storage.models import StoredMessage


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="think-tank",
        description="Multi-persona AI conversations with cost accounting",
    )
    subparsers = parser.add_subparsers(dest="command", required=True, help="Available commands")

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    pricing_parser = subparsers.add_parser("pricing", help="Show the effective pricing table")
    _add_config_args(pricing_parser)

    chat_parser = subparsers.add_parser("chat", help="Run a conversation between configured personas")
    _add_config_args(chat_parser)
    chat_parser.add_argument("message", help="Opening user message")
    chat_parser.add_argument("-p", "--persona", action="append", help="Persona id (repeatable, default: all)")
    chat_parser.add_argument("-r", "--rounds", type=int, default=1, help="Number of persona turns")
    chat_parser.add_argument("--manual", action="store_true", help="Only continue when someone is mentioned")
    chat_parser.add_argument(
        "--policy",
        default="round-robin",
        choices=["round-robin", "least-recent", "random", "weighted"],
        help="Who speaks when nobody was mentioned",
    )
    chat_parser.add_argument("--stream", action="store_true", help="Print chunks as they arrive")
    chat_parser.add_argument("--user", default="cli", help="User id recorded with costs")

    metrics_parser = subparsers.add_parser("metrics", help="Summarize cache hits and savings")
    _add_config_args(metrics_parser)
    metrics_parser.add_argument("--user", help="Filter by user id")
    metrics_parser.add_argument("--conversation", help="Filter by conversation id")
    metrics_parser.add_argument("--group-by", default="day", choices=[g.value for g in GroupBy])

    args = parser.parse_args()
    config = _load(args.config, args.env)

    if args.command == "config-check":
        _check_config(args.config, config)
    elif args.command == "pricing":
        _show_pricing(config)
    elif args.command == "chat":
        setup_logging(config.log_level, json_output=config.log_json)
        sys.exit(asyncio.run(_chat(config, args)))
    elif args.command == "metrics":
        setup_logging(config.log_level, json_output=config.log_json)
        asyncio.run(_metrics(config, args))


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, config: AppConfig) -> None:
    providers = [name for name in ("openai", "anthropic", "gemini") if getattr(config, name) is not None]
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Providers: {', '.join(providers) or '(none)'}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Cache TTL: {config.cache.ttl_seconds:g}s (max {config.cache.max_entries} entries)")
    print(f"  Pricing overrides: {len(config.pricing)}")
    print(f"  Personas: {len(config.personas)}")
    for p in config.personas:
        marker = "" if p.provider in providers else "  <- provider not configured"
        print(f"    - {p.id} '{p.name}' [{p.provider}: {p.model}]{marker}")


def _show_pricing(config: AppConfig) -> None:
    table = build_pricing_table(config)
    print(f"{'provider:model':<44} {'input':>9} {'output':>9} {'cached':>9}")
    for key, entry in sorted(table.items()):
        cached = f"{entry.cached_input:>9.3f}" if entry.cached_input is not None else f"{'-':>9}"
        print(f"{key:<44} {entry.input:>9.3f} {entry.output:>9.3f} {cached}")
    print(f"{'(default)':<44} {table.default.input:>9.3f} {table.default.output:>9.3f}")
    print("USD per 1M tokens")


class _PrintSink:
    closed = False

    async def send(self, chunk: str) -> None:
        print(chunk, end="", flush=True)


async def _chat(config: AppConfig, args: argparse.Namespace) -> int:
    async with ThinkTankApp(config) as app:
        ids = args.persona or list(app.personas)
        unknown = [pid for pid in ids if pid not in app.personas]
        if unknown or not ids:
            print(f"Unknown or missing personas: {', '.join(unknown) or '(none configured)'}", file=sys.stderr)
            return 2

        roster = [app.personas[pid] for pid in ids]
        roster = [replace(p, system_prompt=enhance_system_prompt(p.system_prompt, roster, p)) for p in roster]
        turns = ConversationTurns(
            roster,
            mode=ConversationMode.MANUAL if args.manual else ConversationMode.AUTOMATIC,
            fallback=create_policy(args.policy),
        )
        conversation_id = uuid.uuid4().hex[:12]
        history = [ChatMessage(role=Role.USER, content=args.message)]
        await app.snapshots.save_message(
            StoredMessage(conversation_id=conversation_id, role=Role.USER.value, content=args.message)
        )

        speaker: Persona | None = roster[0]
        total_cost = 0.0
        for _ in range(args.rounds):
            if speaker is None:
                break
            print(f"\n[{speaker.name}] ", end="", flush=True)
            try:
                result = await app.manager.respond(
                    speaker,
                    history,
                    _PrintSink() if args.stream else None,
                    user_id=args.user,
                    conversation_id=conversation_id,
                )
            except ThinkTankError as e:
                print(f"\nError: {e}", file=sys.stderr)
                return 1

            turns.record_turn(speaker.id)
            mention, decision = turns.decide(result.content)
            if not args.stream:
                print(mention.content)
            total_cost += result.cost
            print(f"  ({result.usage.total_tokens} tokens, ${result.cost:.6f})")

            history.append(ChatMessage(role=Role.ASSISTANT, content=f"{speaker.name}: {mention.content}"))
            await app.snapshots.save_message(
                StoredMessage(
                    conversation_id=conversation_id,
                    role=Role.ASSISTANT.value,
                    content=mention.content,
                    persona_id=speaker.id,
                )
            )
            speaker = next((p for p in roster if p.id == decision.next_persona_id), None)

        turns.end()
        print(f"\nConversation {conversation_id}: total ${total_cost:.6f}")
        return 0


async def _metrics(config: AppConfig, args: argparse.Namespace) -> None:
    async with ThinkTankApp(config) as app:
        summary = await app.metrics.summarize(
            {"userId": args.user, "conversationId": args.conversation, "groupBy": args.group_by}
        )
        if args.conversation:
            summary["cost"] = await app.metrics.cost_breakdown(args.conversation)
    print(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()
