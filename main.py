"""
Script Asset Mirror - Command Line Entry Point

Mirrors every image referenced by a script JSON file and streams progress as
newline-delimited JSON on stdout:

    {"type": "progress", "event": {...}}     one per pipeline event
    {"type": "complete", "result": {...}}    on success
    {"type": "error", "message": "..."}      on failure

Logs go to stderr so stdout stays machine readable.
"""

import asyncio
import argparse
import json
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO

from core.config import config
from core.exceptions import MirrorError, RunCancelled
from data.models import ProcessingEvent
from orchestrator import MirrorOrchestrator
from utils.logger import setup_logger

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130


class NDJSONWriter:
    """One JSON object per line, flushed immediately"""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    def write(self, message: Dict[str, Any]):
        self.stream.write(json.dumps(message, ensure_ascii=False) + "\n")
        self.stream.flush()

    def progress(self, event: ProcessingEvent):
        self.write({"type": "progress", "event": event.model_dump(mode='json', exclude_none=True)})

    def complete(self, result: Dict[str, Any]):
        self.write({"type": "complete", "result": result})

    def error(self, message: str):
        self.write({"type": "error", "message": message})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mirror the images of a script JSON file into S3 or local storage",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s script.json                          # Mirror with configured defaults
  %(prog)s script.json --name "Trouble Brewing" # Override the script name
  %(prog)s script.json --use-proxy              # Route downloads through US proxies
  %(prog)s - < script.json                      # Read the script from stdin
        """
    )

    parser.add_argument("script", help="Path to the script JSON file, or - for stdin")
    parser.add_argument("--name", type=str, help="Script display name (default: meta entry name)")

    proxy_group = parser.add_mutually_exclusive_group()
    proxy_group.add_argument("--use-proxy", dest="use_proxy", action="store_const", const=True,
                             help="Download through the US proxy pool")
    proxy_group.add_argument("--no-proxy", dest="use_proxy", action="store_const", const=False,
                             help="Download directly even if USE_US_PROXY is set")
    parser.set_defaults(use_proxy=None)

    parser.add_argument("--force-reprocess", action="store_true", help="Re-upload assets that already exist")
    parser.add_argument("--public-base-url", type=str, help="Origin prefixed to local-mirror URLs")
    parser.add_argument("--output", type=str, help="Also write the complete result JSON to this file")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default=None,
                        help="Logging level (default: LOG_LEVEL or INFO)")
    return parser


def read_script(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def write_result(path: str, result: Dict[str, Any]):
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(result, f, indent=2, ensure_ascii=False)


def _install_signal_handlers(cancel_event: asyncio.Event) -> List[int]:
    """SIGINT/SIGTERM set the abort signal; returns the signals actually hooked"""
    loop = asyncio.get_running_loop()
    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, cancel_event.set)
            installed.append(signum)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows event loops and non-main threads
            continue
    return installed


def _remove_signal_handlers(signals: List[int]):
    loop = asyncio.get_running_loop()
    for signum in signals:
        loop.remove_signal_handler(signum)


async def main(argv: Optional[List[str]] = None, stream: Optional[TextIO] = None,
               orchestrator: Optional[MirrorOrchestrator] = None) -> int:
    args = build_parser().parse_args(argv)
    writer = NDJSONWriter(stream)
    logger = setup_logger("asset_mirror", args.log_level or config.log_level, config.log_file)

    try:
        script_content = read_script(args.script)
    except OSError as e:
        writer.error(f"Cannot read script {args.script}: {e}")
        return EXIT_FAILED

    orchestrator = orchestrator or MirrorOrchestrator()
    cancel_event = asyncio.Event()
    hooked = _install_signal_handlers(cancel_event)

    try:
        result = await orchestrator.process(
            script_content,
            args.name,
            on_event=writer.progress,
            use_proxy=args.use_proxy,
            force_reprocess=args.force_reprocess,
            public_base_url=args.public_base_url,
            cancel_event=cancel_event
        )
    except RunCancelled as e:
        writer.error(e.message)
        return EXIT_INTERRUPTED
    except MirrorError as e:
        writer.error(e.message)
        return EXIT_FAILED
    finally:
        _remove_signal_handlers(hooked)

    payload = result.to_payload()
    if args.output:
        try:
            write_result(args.output, payload)
        except OSError as e:
            logger.error(f"Failed to write {args.output}: {e}")
            writer.error(f"Cannot write result file {args.output}: {e}")
            return EXIT_FAILED

    writer.complete(payload)
    return EXIT_OK


def run():
    """Synchronous wrapper for async main"""
    try:
        exit_code = asyncio.run(main())
    except KeyboardInterrupt:
        NDJSONWriter().error("Interrupted")
        exit_code = EXIT_INTERRUPTED
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
