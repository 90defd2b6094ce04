"""
Browser logger bridge: streams page telemetry to a local controller and runs
the controller's commands against the browser over the DevTools protocol.
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from collections.abc import Sequence
from dataclasses import replace

from .agent import BridgeAgent
from .config import BridgeConfig
from .http_client import ControllerClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)
logger = logging.getLogger("logger_bridge")

__all__ = ["build_parser", "main"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="browser-logger-bridge", description=__doc__)
    parser.add_argument("--host", help="controller host")
    parser.add_argument("--port", type=int, help="controller port")
    parser.add_argument("--cdp-host", help="DevTools host")
    parser.add_argument("--cdp-port", type=int, help="DevTools port")
    parser.add_argument("--target", help="target id to attach to (default: active tab)")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="run the agent until interrupted (default)")
    sub.add_parser("status", help="print controller and tab status")
    sub.add_parser("clear", help="clear the controller's stored logs")
    sub.add_parser("screenshot", help="capture the active tab and post it to the controller")
    return parser


def config_from_args(args: argparse.Namespace) -> BridgeConfig:
    config = BridgeConfig.from_env()
    overrides = {
        "controller_host": args.host,
        "controller_port": args.port,
        "cdp_host": args.cdp_host,
        "cdp_port": args.cdp_port,
        "target_id": args.target,
    }
    return replace(config, **{k: v for k, v in overrides.items() if v is not None})


def _run(config: BridgeConfig) -> int:
    agent = BridgeAgent(config)
    done = threading.Event()

    def _stop(signum, _frame) -> None:
        logger.info("signal_received signum=%s", signum)
        done.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    agent.start()
    try:
        while not done.wait(1.0):
            pass
    finally:
        agent.stop()
    return 0


def _status(config: BridgeConfig) -> int:
    client = ControllerClient(config)
    identified = client.check_identity()
    out: dict[str, object] = {
        "controller": config.controller_url,
        "identified": identified,
        "version": client.get_version(),
        "stats": client.fetch_stats(),
    }
    agent = BridgeAgent(config, client=client)
    try:
        out["tabs"] = agent.host.list_tabs()
    except Exception as exc:  # noqa: BLE001
        out["tabs"] = None
        out["cdpError"] = str(exc)
    print(json.dumps(out, ensure_ascii=False, indent=2))
    return 0 if identified else 1


def _clear(config: BridgeConfig) -> int:
    client = ControllerClient(config)
    if not client.check_identity():
        logger.error("controller_unreachable url=%s", config.controller_url)
        return 1
    return 0 if client.clear() else 1


def _screenshot(config: BridgeConfig) -> int:
    client = ControllerClient(config)
    if not client.check_identity():
        logger.error("controller_unreachable url=%s", config.controller_url)
        return 1
    agent = BridgeAgent(config, client=client)
    data_url = agent.capture_screenshot(config.target_id)
    if data_url is None:
        return 1
    logger.info("screenshot_posted bytes=%s", len(data_url))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the logger bridge CLI."""
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    config = config_from_args(args)
    handlers = {
        None: _run,
        "run": _run,
        "status": _status,
        "clear": _clear,
        "screenshot": _screenshot,
    }
    return handlers[args.command](config)


if __name__ == "__main__":
    sys.exit(main())
