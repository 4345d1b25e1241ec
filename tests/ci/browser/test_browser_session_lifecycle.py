"""Tests for BrowserSession startup, the control handle and teardown."""

from __future__ import annotations

import asyncio
import logging

import pytest

from chrome_session.config import BrowserSessionConfig, ChromeDriverConfig
from chrome_session.driver import ChromeDriver
from chrome_session.session import BrowserSession
from chrome_session.views import SessionStartupError


def test_from_config_binds_driver_and_session_config() -> None:
	driver_config = ChromeDriverConfig(browser_path='/custom/chrome', command_timeout=12.0)
	session = BrowserSession.from_config(driver_config, BrowserSessionConfig(call_timeout=9.0))

	assert isinstance(session.driver, ChromeDriver)
	assert session.driver.config.browser_path == '/custom/chrome'
	assert session.driver.config.command_timeout == 12.0
	assert session.config.call_timeout == 9.0
	assert session.started is False


def test_logger_name_carries_session_and_target_suffix(session: BrowserSession) -> None:
	logger = session.logger
	assert isinstance(logger, logging.Logger)
	assert logger.name.startswith('chrome_session.BrowserSession🅑 ')
	assert session.id[-4:] in logger.name
	assert logger.name.endswith('🅣 --')


@pytest.mark.asyncio
async def test_ensure_started_launches_once_and_registers_control_handle(session: BrowserSession, fake_driver) -> None:
	await session.ensure_started()
	await session.ensure_started()

	assert fake_driver.launches == 1
	control = session.control_handle
	assert control.is_control is True
	assert session.registry.ids() == [control.target_id]
	assert session.registry.active_id == control.target_id
	assert fake_driver.targets[control.target_id]['url'] == 'about:blank'
	assert session.logger.name.endswith(control.target_id[-2:])


@pytest.mark.asyncio
async def test_concurrent_first_callers_share_one_launch(session: BrowserSession, fake_driver) -> None:
	fake_driver.delay = 0.01

	await asyncio.gather(*(session.ensure_started() for _ in range(5)))

	assert fake_driver.launches == 1
	assert len(session.registry) == 1


@pytest.mark.asyncio
async def test_startup_failure_is_cached_and_not_retried(session: BrowserSession, fake_driver) -> None:
	fake_driver.launch_error = RuntimeError('chrome binary not found')

	with pytest.raises(SessionStartupError, match='failed to initialize browser: chrome binary not found') as first:
		await session.ensure_started()
	with pytest.raises(SessionStartupError) as second:
		await session.ensure_started()

	assert first.value is second.value
	assert fake_driver.launches == 1
	assert fake_driver.closed is True
	assert session.started is False
	assert len(session.registry) == 0


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_abort_the_shared_launch(session: BrowserSession, fake_driver) -> None:
	fake_driver.delay = 0.02
	first = asyncio.ensure_future(session.ensure_started())
	await asyncio.sleep(0.005)
	first.cancel()
	with pytest.raises(asyncio.CancelledError):
		await first

	await session.ensure_started()
	assert fake_driver.launches == 1
	assert session.started is True


@pytest.mark.asyncio
async def test_open_handle_creates_unregistered_tab(session: BrowserSession, fake_driver) -> None:
	await session.ensure_started()

	handle = await session.open_handle()

	assert handle.is_control is False
	assert handle.target_id in fake_driver.targets
	assert session.registry.get(handle.target_id) is None

	await handle.release()
	assert fake_driver.released == [handle.target_id]


@pytest.mark.asyncio
async def test_close_tears_down_the_process_without_releasing_control(session: BrowserSession, fake_driver) -> None:
	await session.ensure_started()

	await session.close()
	await session.close()

	assert fake_driver.closed is True
	assert fake_driver.released == []
	with pytest.raises(SessionStartupError, match='closed'):
		await session.ensure_started()


def test_control_handle_requires_a_started_session(session: BrowserSession) -> None:
	with pytest.raises(RuntimeError, match='not started'):
		session.control_handle
