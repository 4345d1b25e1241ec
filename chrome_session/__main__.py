"""Drive a browser from JSON tool calls on stdin, one per line.

Example:
	echo '{"action": "go_to_url", "url": "https://example.com"}' | python -m chrome_session --headed
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from pydantic import ValidationError

from chrome_session.config import BrowserSessionConfig, ChromeDriverConfig
from chrome_session.session import BrowserSession
from chrome_session.tool import BrowserTool
from chrome_session.views import BrowserActionError, SessionStartupError


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog='chrome_session',
		description='Run browser actions read as JSON objects from stdin, one per line.',
	)
	parser.add_argument('--headed', action='store_true', help='Show the browser window')
	parser.add_argument('--browser-path', help='Chrome/Chromium binary (auto-detected if omitted)')
	parser.add_argument('--call-timeout', type=float, help='Per-action timeout in seconds (default 60)')
	parser.add_argument('--json', action='store_true', help='Print each result as a JSON object')
	parser.add_argument('--log-level', default='WARNING', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level')
	return parser


def _build_session(args: argparse.Namespace) -> BrowserSession:
	"""Settings from the environment, overridden by command-line flags. Raises ValidationError on bad values."""
	driver_overrides: dict[str, object] = {}
	if args.headed:
		driver_overrides['headless'] = False
	if args.browser_path:
		driver_overrides['browser_path'] = args.browser_path
	session_overrides: dict[str, object] = {}
	if args.call_timeout is not None:
		session_overrides['call_timeout'] = args.call_timeout
	return BrowserSession.from_config(ChromeDriverConfig(**driver_overrides), BrowserSessionConfig(**session_overrides))


def _emit(args: argparse.Namespace, ok: bool, text: str) -> None:
	if args.json:
		print(json.dumps({'ok': ok, 'result' if ok else 'error': text}), flush=True)
	elif ok:
		print(text, flush=True)
	else:
		print(f'error: {text}', flush=True)


async def _serve(args: argparse.Namespace, session: BrowserSession) -> int:
	tool = BrowserTool(session=session)
	try:
		while True:
			line = await asyncio.to_thread(sys.stdin.readline)
			if not line:
				return 0
			if not line.strip():
				continue
			try:
				result = await tool.run_json(line)
			except SessionStartupError as exc:
				_emit(args, False, str(exc))
				return 1
			except BrowserActionError as exc:
				_emit(args, False, str(exc))
				continue
			_emit(args, True, result)
	finally:
		await tool.close()


def main(argv: list[str] | None = None) -> int:
	parser = build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(level=getattr(logging, args.log_level), format='%(levelname)-8s [%(name)s] %(message)s')
	try:
		session = _build_session(args)
	except ValidationError as exc:
		parser.error(f'invalid configuration: {exc}')
	try:
		return asyncio.run(_serve(args, session))
	except KeyboardInterrupt:
		return 130


if __name__ == '__main__':
	sys.exit(main())
