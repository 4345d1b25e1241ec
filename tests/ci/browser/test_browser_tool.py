"""Tests for the JSON tool envelope, env configuration and the stdin CLI."""

from __future__ import annotations

import io
import json
import sys

import pytest
from pydantic import ValidationError

from chrome_session import __main__ as cli
from chrome_session.actions import ACTIONS
from chrome_session.config import BrowserSessionConfig, ChromeDriverConfig
from chrome_session.driver import ChromeDriver
from chrome_session.session import BrowserSession
from chrome_session.tool import BROWSER_TOOL_NAME, BrowserTool, browser_tool_schema
from chrome_session.views import ActionValidationError


def test_schema_lists_every_action_and_parameter() -> None:
	schema = browser_tool_schema()

	assert schema['required'] == ['action']
	assert schema['properties']['action']['enum'] == list(ACTIONS)
	assert len(ACTIONS) == 12
	assert set(schema['properties']) == {'action', 'url', 'ref', 'text', 'scroll_amount', 'tab_index', 'query', 'goal', 'seconds'}
	assert schema['properties']['ref']['type'] == 'integer'


def test_info_describes_the_tool(session: BrowserSession) -> None:
	info = BrowserTool(session=session).info()

	assert info['name'] == BROWSER_TOOL_NAME == 'browser_use'
	assert "'go_to_url': Navigate to a URL" in info['description']
	assert info['parameters'] == browser_tool_schema()


def test_tool_builds_a_lazy_session_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv('CHROME_SESSION_CALL_TIMEOUT', '12.5')

	tool = BrowserTool()

	assert isinstance(tool.session.driver, ChromeDriver)
	assert tool.session.config.call_timeout == 12.5
	assert tool.session.started is False


@pytest.mark.asyncio
async def test_run_json_dispatches_the_named_action(session: BrowserSession, fake_driver) -> None:
	fake_driver.add_page('https://a.example/', title='Page A')
	tool = BrowserTool(session=session)

	result = await tool.run_json(json.dumps({'action': 'go_to_url', 'url': 'https://a.example/'}))

	assert result.startswith('URL: https://a.example/\n\nTitle: Page A')


@pytest.mark.asyncio
@pytest.mark.parametrize(
	('arguments', 'message'),
	[
		('{"action": ', 'invalid input: '),
		('["snapshot"]', 'invalid input: arguments must be a JSON object'),
		('{"action": 3}', 'invalid input: action must be a string'),
		('{}', 'unknown action: '),
		('{"action": "open_window"}', 'unknown action: open_window'),
	],
)
async def test_run_json_rejects_malformed_arguments(session: BrowserSession, fake_driver, arguments: str, message: str) -> None:
	tool = BrowserTool(session=session)

	with pytest.raises(ActionValidationError, match=message):
		await tool.run_json(arguments)

	assert fake_driver.calls == []


@pytest.mark.asyncio
async def test_tool_close_closes_the_browser(session: BrowserSession, fake_driver) -> None:
	tool = BrowserTool(session=session)
	await tool.run_json('{"action": "snapshot"}')

	await tool.close()

	assert fake_driver.closed is True


def test_driver_config_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv('CHROME_SESSION_BROWSER_PATH', '/opt/chrome/chrome')
	monkeypatch.setenv('CHROME_SESSION_HEADLESS', 'false')
	monkeypatch.setenv('CHROME_SESSION_EXTRA_ARGS', '--lang=en-US, --mute-audio,')
	monkeypatch.setenv('CHROME_SESSION_PAGE_LOAD_TIMEOUT', '12')
	monkeypatch.setenv('CHROME_SESSION_CHROMEDRIVER_PATH', '   ')

	config = ChromeDriverConfig.from_env()

	assert config.browser_path == '/opt/chrome/chrome'
	assert config.headless is False
	assert config.extra_args == ['--lang=en-US', '--mute-audio']
	assert config.page_load_timeout == 12.0
	assert config.chromedriver_path is None


def test_session_config_defaults_and_env(monkeypatch: pytest.MonkeyPatch) -> None:
	defaults = BrowserSessionConfig.from_env()
	assert defaults.call_timeout == 60.0
	assert defaults.new_tab_wait == 0.5
	assert defaults.max_wait_seconds == 30

	monkeypatch.setenv('CHROME_SESSION_SEARCH_URL', 'https://search.example/?q=')
	assert BrowserSessionConfig.from_env().search_url == 'https://search.example/?q='


def test_every_config_field_is_settable_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv('CHROME_SESSION_WINDOW_WIDTH', '800')
	monkeypatch.setenv('CHROME_SESSION_SCRIPT_TIMEOUT', '5')
	monkeypatch.setenv('CHROME_SESSION_NEW_TAB_WAIT', '1.5')
	monkeypatch.setenv('CHROME_SESSION_MAX_SNAPSHOT_ELEMENTS', '50')

	driver_config = ChromeDriverConfig.from_env()
	session_config = BrowserSessionConfig.from_env()

	assert driver_config.window_width == 800
	assert driver_config.script_timeout == 5.0
	assert session_config.new_tab_wait == 1.5
	assert session_config.max_snapshot_elements == 50


@pytest.mark.parametrize(
	('name', 'value', 'config_cls'),
	[
		('CHROME_SESSION_HEADLESS', 'ture', ChromeDriverConfig),
		('CHROME_SESSION_PAGE_LOAD_TIMEOUT', 'abc', ChromeDriverConfig),
		('CHROME_SESSION_CALL_TIMEOUT', 'abc', BrowserSessionConfig),
		('CHROME_SESSION_CALL_TIMEOUT', '-1', BrowserSessionConfig),
	],
)
def test_invalid_env_values_are_rejected(monkeypatch: pytest.MonkeyPatch, name: str, value: str, config_cls: type) -> None:
	monkeypatch.setenv(name, value)

	with pytest.raises(ValidationError):
		config_cls.from_env()


def test_keyword_arguments_win_over_env(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv('CHROME_SESSION_HEADLESS', 'true')

	assert ChromeDriverConfig(headless=False).headless is False


def test_cli_flags_override_env(monkeypatch: pytest.MonkeyPatch) -> None:
	monkeypatch.setenv('CHROME_SESSION_HEADLESS', 'true')
	args = cli.build_parser().parse_args(['--headed', '--browser-path', '/usr/bin/chromium', '--call-timeout', '7'])

	session = cli._build_session(args)

	assert session.driver.config.headless is False
	assert session.driver.config.browser_path == '/usr/bin/chromium'
	assert session.config.call_timeout == 7.0


def test_cli_rejects_out_of_range_flags(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
	args = cli.build_parser().parse_args(['--call-timeout', '-1'])
	with pytest.raises(ValidationError):
		cli._build_session(args)

	_stdin(monkeypatch, '{"action": "snapshot"}')
	with pytest.raises(SystemExit) as exc_info:
		cli.main(['--call-timeout', '0'])

	assert exc_info.value.code == 2
	assert 'invalid configuration' in capsys.readouterr().err


def _stdin(monkeypatch: pytest.MonkeyPatch, *lines: str) -> None:
	monkeypatch.setattr(sys, 'stdin', io.StringIO(''.join(line + '\n' for line in lines)))


def test_cli_serves_json_lines_until_eof(
	monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], session: BrowserSession, fake_driver
) -> None:
	fake_driver.add_page('https://a.example/', title='Page A')
	monkeypatch.setattr(cli, '_build_session', lambda args: session)
	_stdin(
		monkeypatch,
		'{"action": "go_to_url", "url": "https://a.example/"}',
		'',
		'{"action": "click", "ref": 9}',
	)

	assert cli.main(['--json']) == 0

	lines = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
	assert lines[0]['ok'] is True
	assert lines[0]['result'].startswith('URL: https://a.example/')
	assert lines[1] == {'ok': False, 'error': 'no snapshot available; call snapshot first'}
	assert fake_driver.closed is True


def test_cli_stops_when_the_browser_cannot_start(
	monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str], session: BrowserSession, fake_driver
) -> None:
	fake_driver.launch_error = RuntimeError('chrome binary not found')
	monkeypatch.setattr(cli, '_build_session', lambda args: session)
	_stdin(monkeypatch, '{"action": "snapshot"}', '{"action": "snapshot"}')

	assert cli.main([]) == 1

	assert capsys.readouterr().out.splitlines() == ['error: failed to initialize browser: chrome binary not found']
	assert fake_driver.launches == 1
