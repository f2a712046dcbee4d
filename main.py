"""Kajig - heuristic findings research

Simple CLI for scans, conversations and the backend catalog.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from kajig.agents.chat_orchestrator import ChatOrchestrator
from kajig.agents.evolution import EvolutionController
from kajig.backends.registry import build_registry
from kajig.services.memory_store import InMemoryStore
from kajig.services.prompt_store import render_prompt


def _print_progress(cycle: int, message: str) -> None:
    print(f"[~] cycle {cycle}: {message}")


async def run_scan(target: str | None, dump_path: str | None, max_cycles: int | None):
    """Run probes plus refinement cycles and print the ranked findings."""
    dump = Path(dump_path).read_text(encoding="utf-8") if dump_path else None
    memory = InMemoryStore()
    controller = EvolutionController(
        ChatOrchestrator(build_registry(), memory=memory),
        memory=memory,
    )
    report = await controller.run(
        target,
        dump,
        max_cycles=max_cycles,
        on_progress=_print_progress,
    )

    summary = report.summary()
    print(f"\n[*] {summary['total']} findings after {summary['cycles_run']} cycle(s)")
    print("=" * 50)
    for finding in report.findings:
        print(
            f"[{finding.severity.value.upper():8}] {finding.name} "
            f"({finding.category}, confidence {finding.confidence:.2f}, cycle {finding.cycle})"
        )
        print(f"    {finding.vector[:200]}")


async def run_chat(backend_id: str | None, auto_switch: bool):
    """Interactive conversation. Ctrl-D exits."""
    orchestrator = ChatOrchestrator(
        build_registry(),
        backend_id=backend_id,
        auto_switch=auto_switch,
    )
    system_prompt = render_prompt("chat.system_prompt")
    print(f"Chatting with {orchestrator.current_backend.name} (auto-switch {'on' if auto_switch else 'off'})")

    while True:
        try:
            text = await asyncio.to_thread(input, "\n> ")
        except EOFError:
            break
        if not text.strip():
            continue

        result = await orchestrator.chat(text, system_prompt=system_prompt)
        if result.switched:
            print(f"[~] switched to {orchestrator.current_backend.name}")
        if not result.ok:
            print(f"[!] turn {result.status.value}")
        print(result.content)

    await orchestrator.drain_background()


def list_backends():
    for descriptor in build_registry().get_all():
        flags = []
        if descriptor.default:
            flags.append("default")
        if descriptor.relaxed:
            flags.append("relaxed")
        print(f"{descriptor.id:45} {descriptor.name:15} {','.join(flags)}")


def main():
    parser = argparse.ArgumentParser(description="Kajig heuristic findings research")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="Run probes and refinement cycles")
    scan.add_argument("--target", "-t", help="Target description or log text")
    scan.add_argument("--dump", "-d", help="Path to a system dump to analyze")
    scan.add_argument("--max-cycles", "-c", type=int, help="Cycle cap (default: from config)")

    chat = sub.add_parser("chat", help="Interactive conversation")
    chat.add_argument("--backend", "-b", help="Backend id (default: registry default)")
    chat.add_argument("--no-auto-switch", action="store_true", help="Disable failover")

    sub.add_parser("backends", help="List registered backends")

    args = parser.parse_args()

    if args.command == "scan":
        asyncio.run(run_scan(args.target, args.dump, args.max_cycles))
    elif args.command == "chat":
        asyncio.run(run_chat(args.backend, not args.no_auto_switch))
    elif args.command == "backends":
        list_backends()
    else:
        parser.print_help()
        sys.exit(2)


if __name__ == "__main__":
    main()
