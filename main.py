"""Proactive Co-Creator

Simple CLI for analysing, refining and generating from a creative prompt.
"""

import argparse
import asyncio

from cocreator.agents.dispatcher import ProviderDispatcher
from cocreator.agents.session import CoCreatorSession
from cocreator.config import settings
from cocreator.models.events import SessionEvent
from cocreator.models.graph import Mode, ProviderConfig, ProviderId
from cocreator.tools.model_discovery import fetch_remote_models


def print_event(event: SessionEvent):
    event_type = event.event.value
    data = event.data

    if event_type == "status":
        print(f"  ... {data.get('message')}")

    elif event_type == "mode_changed":
        print(f"\n[~] Mode: {data.get('from')} -> {data.get('to')}")

    elif event_type == "analysis_started":
        print(f"\n[~] Analysing ({data.get('mode')}): {data.get('prompt', '')[:80]}")

    elif event_type == "graph_updated":
        entities = data.get("entities", [])
        print(f"\n[*] Belief Graph ({len(entities)} entities):")
        for entity in entities:
            marker = "" if entity.get("presence_in_prompt") else " (implicit)"
            print(f"  - {entity.get('name')}{marker}")
            for attr in entity.get("attributes", []):
                values = ", ".join(c["name"] for c in attr.get("value", []))
                print(f"      {attr.get('name')}: {values}")
        for rel in data.get("relationships", []):
            print(f"  {rel.get('source')} --{rel.get('label')}--> {rel.get('target')}")

    elif event_type == "clarifications_updated":
        clarifications = data.get("clarifications", [])
        print(f"\n[?] Clarifications ({len(clarifications)}):")
        for c in clarifications:
            print(f"  - {c.get('question')}")
            print(f"    Options: {', '.join(c.get('options', []))}")

    elif event_type == "content_started":
        print(f"\n[+] Generating {data.get('mode')}...")

    elif event_type == "content_ready":
        print(f"\n[*] {data.get('mode')} ready")
        if "image_count" in data:
            print(f"   Images: {data['image_count']}")
        if "video_uri" in data:
            print(f"   Video: {data['video_uri']}")
        if "story" in data:
            print(f"\n{'='*50}")
            print(data["story"])
            print(f"{'='*50}")

    elif event_type == "prompt_refined":
        print(f"\n[*] Refined prompt:\n  {data.get('prompt')}")

    elif event_type == "error":
        print(f"\n[!] Error: {data.get('message', 'Unknown error')}")


def parse_pair(raw: str, option: str) -> tuple[str, str]:
    key, sep, value = raw.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"{option} expects KEY=VALUE, got {raw!r}")
    return key.strip(), value.strip()


async def run_session(args, config: ProviderConfig):
    session = CoCreatorSession(prompt=args.prompt, mode=Mode(args.mode), config=config)
    session.subscribe(print_event)

    if args.analyze_only:
        await session.analyze_only()
    else:
        await session.submit()

    if not (args.answer or args.edit):
        return

    for raw in args.answer:
        question, answer = parse_pair(raw, "--answer")
        session.reconciler.stage_answer(question, answer)
    for raw in args.edit:
        target, value = parse_pair(raw, "--edit")
        entity, sep, attribute = target.partition(":")
        if not sep:
            raise argparse.ArgumentTypeError(f"--edit expects ENTITY:ATTRIBUTE=VALUE, got {raw!r}")
        session.reconciler.stage_attribute(entity.strip(), attribute.strip(), value)

    outcome = await session.apply_updates()
    if outcome is not None and not args.analyze_only:
        await session.submit()


async def list_models(provider: ProviderId, config: ProviderConfig):
    models = await fetch_remote_models(provider, config.user_key() or None)
    if not models:
        print(f"No models discovered for {provider.value}")
        return
    for m in models:
        star = "*" if m.is_recommended else " "
        print(f" {star} {m.id:<50} {m.description[:60]}")


async def check_key(provider: ProviderId, config: ProviderConfig):
    result = await ProviderDispatcher().validate_provider_key(provider, config.model, config.user_key() or None)
    print(f"[{'+' if result.success else '!'}] {result.message}")


def main():
    parser = argparse.ArgumentParser(description="Proactive Co-Creator")
    parser.add_argument("--prompt", "-p", default="", help="Creative prompt")
    parser.add_argument("--mode", choices=[m.value for m in Mode], default=Mode.IMAGE.value)
    parser.add_argument(
        "--provider",
        choices=[p.value for p in ProviderId],
        default=settings.default_provider,
    )
    parser.add_argument("--model", "-m", help="Model to use (default: from config)")
    parser.add_argument("--api-key", help="Explicit key for the selected provider")
    parser.add_argument("--analyze-only", action="store_true", help="Analyse without generating content")
    parser.add_argument("--answer", action="append", default=[], metavar="QUESTION=ANSWER")
    parser.add_argument("--edit", action="append", default=[], metavar="ENTITY:ATTRIBUTE=VALUE")
    parser.add_argument("--list-models", action="store_true", help="List models the provider serves")
    parser.add_argument("--check-key", action="store_true", help="Verify the provider key with a ping")

    args = parser.parse_args()

    provider = ProviderId(args.provider)
    config = ProviderConfig(
        provider=provider,
        model=args.model or settings.default_model,
        api_keys={provider: args.api_key} if args.api_key else {},
    )

    if args.list_models:
        asyncio.run(list_models(provider, config))
    elif args.check_key:
        asyncio.run(check_key(provider, config))
    elif not args.prompt:
        parser.error("--prompt is required")
    else:
        try:
            asyncio.run(run_session(args, config))
        except argparse.ArgumentTypeError as exc:
            parser.error(str(exc))


if __name__ == "__main__":
    main()
