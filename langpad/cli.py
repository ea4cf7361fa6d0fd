# langpad/cli.py
"""Command line front end: ``langpad [--grammar FILE] [--content FILE] ...``."""

import argparse
import asyncio
import logging
import os
import shutil
import signal
import sys
from typing import Dict, List, Optional

from .config import load_config, read_source_file, setup_logging
from .display import ConsoleDisplay
from .editor import EditorView
from .errors import PlaygroundSetupError
from .orchestrator import Playground
from .share import share
from .tree import TreeRenderer

logger = logging.getLogger(__name__)

WATCH_INTERVAL_SECONDS = 0.5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="langpad",
        description="Grammar playground: edit a grammar and see programs written in it parsed live.",
    )
    parser.add_argument("--grammar", metavar="FILE", help="grammar file (default: built-in Hello World)")
    parser.add_argument("--content", metavar="FILE", help="program file written in the grammar")
    parser.add_argument("--encoded-grammar", metavar="S", help="grammar from a share link")
    parser.add_argument("--encoded-content", metavar="S", help="program from a share link")
    parser.add_argument("--watch", action="store_true",
                        help="keep running and feed file changes into the playground")
    parser.add_argument("--share", action="store_true", help="print a share link and copy it to the clipboard")
    parser.add_argument("--config", metavar="PATH", default="config.toml", help="config file (default: %(default)s)")
    return parser


def _terminal_size():
    size = shutil.get_terminal_size()
    return size.columns, size.lines


def _install_resize_handler(loop: asyncio.AbstractEventLoop, playground: Playground) -> None:
    if not hasattr(signal, "SIGWINCH"):
        return
    try:
        loop.add_signal_handler(signal.SIGWINCH, lambda: playground.on_resize(_terminal_size()))
    except (NotImplementedError, RuntimeError) as exc:
        logger.debug("Could not install SIGWINCH handler: %s", exc)


def _mtime(path: Optional[str]) -> Optional[float]:
    if not path:
        return None
    try:
        return os.stat(path).st_mtime
    except OSError:
        return None


async def _watch(playground: Playground, grammar_path: Optional[str], content_path: Optional[str]) -> None:
    """Polls the input files and replays their new contents as editor edits."""
    paths: Dict[str, Optional[str]] = {"grammar": grammar_path, "content": content_path}
    seen = {name: _mtime(path) for name, path in paths.items()}
    while True:
        await asyncio.sleep(WATCH_INTERVAL_SECONDS)
        for name, path in paths.items():
            mtime = _mtime(path)
            if mtime is None or mtime == seen[name]:
                continue
            seen[name] = mtime
            try:
                text = read_source_file(path)
            except OSError as exc:
                logger.warning("Could not re-read %s: %s", path, exc)
                continue
            logger.info("%s changed, updating the %s editor", path, name)
            if name == "grammar":
                playground.edit_definition(text)
            else:
                playground.edit_sample(text)


async def run(args: argparse.Namespace, config: Dict) -> int:
    grammar = read_source_file(args.grammar) if args.grammar else None
    content = read_source_file(args.content) if args.content else None

    display = ConsoleDisplay()
    renderer = TreeRenderer()
    playground = Playground(EditorView("definition"), EditorView("sample"), display, renderer, config)
    try:
        await playground.setup(grammar=grammar, content=content,
                               encoded_grammar=args.encoded_grammar, encoded_content=args.encoded_content)
    except PlaygroundSetupError as exc:
        print(f"langpad: {exc}", file=sys.stderr)
        await playground.shutdown()
        return 1

    try:
        _install_resize_handler(asyncio.get_running_loop(), playground)
        if args.share:
            state = playground.get_playground_state()
            print(share(state.grammar, state.content, config["playground"]["share_base_url"]))
        if args.watch:
            await _watch(playground, args.grammar, args.content)
            return 0
        if playground.manager.live is None:
            return 1
        render_timeout = config["playground"].get("render_timeout") or None
        if not await renderer.wait_rendered(render_timeout):
            logger.error("No parse result arrived within %ss", render_timeout)
            return 1
        return 0
    finally:
        await playground.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    setup_logging(config)
    logger.info("langpad starting up")
    try:
        return asyncio.run(run(args, config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except OSError as exc:
        logger.critical("Unhandled I/O error: %s", exc, exc_info=True)
        print(f"langpad: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
