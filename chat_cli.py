#!/usr/bin/env python3
"""Terminal chat against the relay - watch the answer assemble in real time.

Usage:
    python run_api.py   # Terminal 1
    python chat_cli.py  # Terminal 2
"""

import argparse
import logging
import sys

from src.chat import ChatEngine, Role
from src.chat.config import DEFAULT_RELAY_URL

CYAN = "\033[96m"
DIM = "\033[2m"
RESET = "\033[0m"


class LivePrinter:
    """Prints only the newly visible part of the assistant message."""

    def __init__(self):
        self.shown = ""

    def reset(self):
        self.shown = ""

    def __call__(self, engine: ChatEngine):
        if not engine.messages or engine.messages[-1].role != Role.ASSISTANT:
            return
        content = engine.messages[-1].content
        if content.startswith(self.shown):
            sys.stdout.write(content[len(self.shown):])
        else:
            # An overlap fix rewrote earlier text: reprint the line
            sys.stdout.write("\r\033[K" + content)
        sys.stdout.flush()
        self.shown = content


def main():
    parser = argparse.ArgumentParser(description="Stream Chat terminal client")
    parser.add_argument("--url", type=str, default=DEFAULT_RELAY_URL, help="Relay chat endpoint")
    parser.add_argument("--log-level", type=str, default="warning", help="Log level")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(asctime)s | %(levelname)7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    printer = LivePrinter()
    engine = ChatEngine(args.url, on_update=printer)

    print(f"{CYAN}Stream Chat{RESET}  (Ctrl+D to quit)\n")
    while True:
        try:
            text = input("> ")
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not text.strip():
            continue

        printer.reset()
        try:
            engine.ask(text)
        except KeyboardInterrupt:
            pass
        print()
        if engine.conversation_id:
            print(f"{DIM}Conversation ID: {engine.conversation_id}{RESET}")
        print()


if __name__ == "__main__":
    main()
