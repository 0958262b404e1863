#!/usr/bin/env python3
"""
webtail
- tail -f into the browser over WebSocket
- several files (pick one on the page), one rewritten file, or stdin
- heartbeat per connection, browser reconnects on close
"""

import argparse
import asyncio
import signal
from pathlib import Path
from typing import List, Optional

from .config import Config
from .logger import get_logger, setup_logging
from .server import TailServer
from .sources import Mode, SourceCatalog

log = get_logger("main")


# --------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="webtail", description="Stream a growing file or stdin to the browser.")
    p.add_argument("files", nargs="*", metavar="FILE", help="files to offer; none means standard input")
    p.add_argument("--config", help="YAML settings file")
    p.add_argument("--addr", help="http service address, HOST:PORT (default :8080)")
    p.add_argument("--single", action="store_true",
                   help="follow one file, resending it whole whenever it changes")
    p.add_argument("--poll-interval", type=float, help="seconds between source polls")
    p.add_argument("--liveness-timeout", type=float, help="seconds to wait for a pong")
    p.add_argument("--log-level", help="console log level")
    p.add_argument("--log-file", help="also log to this file, rotated at midnight")
    return p


def select_mode(args: argparse.Namespace) -> Mode:
    if args.single:
        return Mode.SINGLE
    return Mode.MULTI if args.files else Mode.STDIN


def configure(args: argparse.Namespace) -> Config:
    cfg = Config.load(args.config)
    if args.addr:
        cfg.set_addr(args.addr)
    if args.poll_interval is not None:
        cfg.tail.poll_interval = args.poll_interval
    if args.liveness_timeout is not None:
        cfg.tail.liveness_timeout = args.liveness_timeout
    if args.log_level:
        cfg.log_level = args.log_level.upper()
    if args.log_file:
        cfg.log_file = args.log_file
    cfg.validate()
    return cfg


def parse(argv: Optional[List[str]] = None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.single and len(args.files) != 1:
        parser.error("--single needs exactly one FILE")
    try:
        cfg = configure(args)
    except (OSError, ValueError) as e:
        parser.error(str(e))
    mode = select_mode(args)
    paths = [str(Path(f).absolute()) for f in args.files]
    catalog = SourceCatalog(mode, paths, max_read=cfg.tail.max_read)
    return cfg, catalog


# --------------------------------------------------
async def main(cfg: Config, catalog: SourceCatalog):
    loop = asyncio.get_running_loop()
    stop = loop.create_future()

    def request_stop(signame: str):
        if not stop.done():
            log.info("received %s, stopping", signame)
            stop.set_result(None)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_stop, sig.name)
        except NotImplementedError:
            # no signal handlers on this event loop; Ctrl-C still raises KeyboardInterrupt
            pass

    if catalog.mode is Mode.STDIN:
        log.info("tailing standard input")
    else:
        log.info("%s mode, files: %s", catalog.mode.value, ", ".join(catalog.paths))
    await TailServer(cfg, catalog).serve_forever(stop)


def cli(argv: Optional[List[str]] = None):
    cfg, catalog = parse(argv)
    setup_logging(cfg.log_level, cfg.log_file, cfg.log_backup_count, cfg.log_timezone)
    try:
        asyncio.run(main(cfg, catalog))
    except KeyboardInterrupt:
        log.info("interrupted")


if __name__ == "__main__":
    cli()
