#!/usr/bin/env python3
"""Wellness assistant chat CLI."""

import argparse
import asyncio
import json
import logging
import sys

from config.settings import Settings
from functions.executor import FunctionExecutor
from llm.factory import TransportProvider, create_transport
from orchestrator import ConversationSession
from schemas.responses import SnapshotStatus


async def run_chat(settings: Settings, messages, show_partial: bool):
    """Send each message in turn and print the replies."""
    transport = create_transport(
        TransportProvider(settings.transport),
        base_url=settings.api_base_url,
        api_key=settings.openai_api_key,
        assistant_id=settings.chat_assistant_id
    )
    session = ConversationSession(
        transport,
        executor=FunctionExecutor.with_stores(),
        settings=settings
    )
    failed = False
    try:
        for message in messages:
            print(f"\nYOU: {message}")
            async for snapshot in session.send_turn(message):
                if snapshot.sequence == 1 and snapshot.handoff_message:
                    print(f"[{snapshot.handoff_message}]")
                if snapshot.status == SnapshotStatus.STREAMING:
                    if show_partial:
                        print(f"  ... {json.dumps(snapshot.response.present_fields())[:120]}")
                elif snapshot.status == SnapshotStatus.FINAL:
                    persona = snapshot.persona.value if snapshot.persona else "assistant"
                    print(f"\n{persona.upper()}:")
                    print(json.dumps(snapshot.response.present_fields(), indent=2))
                else:
                    failed = True
                    print(f"\nERROR: {snapshot.fallback_message}", file=sys.stderr)
    finally:
        session.abort()
        await transport.aclose()
    return failed


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Wellness Assistant - stream a conversation with the specialist team"
    )
    parser.add_argument(
        "--message",
        "-m",
        type=str,
        action="append",
        required=True,
        help="Message to send (repeat for a multi-turn conversation)"
    )
    parser.add_argument(
        "--transport",
        "-t",
        type=str,
        choices=[p.value for p in TransportProvider],
        default="http",
        help="Turn transport (default: http)"
    )
    parser.add_argument(
        "--base-url",
        type=str,
        help="Assistant API root for the http transport (default: THRIVE_API_BASE_URL)"
    )
    parser.add_argument(
        "--assistant-id",
        type=str,
        help="Assistant id for the openai transport (default: THRIVE_CHAT_ASSISTANT_ID)"
    )
    parser.add_argument(
        "--show-partial",
        action="store_true",
        help="Print streaming snapshots as they arrive"
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    # Create settings
    settings = Settings(
        transport=args.transport,
        api_base_url=args.base_url,
        chat_assistant_id=args.assistant_id,
        verbose=args.verbose,
    )

    try:
        failed = asyncio.run(run_chat(settings, args.message, args.show_partial))
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)
    except KeyboardInterrupt:
        sys.exit(130)

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
