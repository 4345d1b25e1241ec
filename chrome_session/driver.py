"""Async Chrome WebDriver wrapper used by BrowserSession.

Selenium calls stay behind ``asyncio.to_thread()`` so the event loop is never
blocked by synchronous WebDriver round trips. A connection is bound to one
window handle; for Chrome the window handle is the DevTools target id.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

import anyio
from pydantic import BaseModel, ConfigDict, validate_call

from chrome_session.config import DEFAULT_BROWSER_CANDIDATES, ChromeDriverConfig
from chrome_session.views import DriverError, TargetInfo, TargetLostError

T = TypeVar('T')

logger = logging.getLogger(__name__)

# Attribute stamped on interactive elements by the snapshot script.
REF_ATTRIBUTE = 'data-chrome-session-ref'

_READY_STATE_SCRIPT = "return document.readyState !== 'loading' && !!document.body;"


class TargetConnection(BaseModel):
	"""Connection bound to a single browser target."""

	model_config = ConfigDict(extra='forbid', frozen=True)

	target_id: str


@runtime_checkable
class BrowserDriver(Protocol):
	"""Protocol calls the session layer issues against the browser."""

	async def launch(self) -> Any: ...

	async def new_connection(self, allocator: Any, target_id: str | None = None) -> TargetConnection: ...

	async def release(self, connection: Any) -> None: ...

	async def navigate(self, connection: Any, url: str) -> None: ...

	async def wait_ready(self, connection: Any) -> None: ...

	async def evaluate(self, connection: Any, script: str, *args: Any) -> Any: ...

	async def location(self, connection: Any) -> str: ...

	async def click_by_ref(self, connection: Any, ref: int) -> None: ...

	async def type_by_ref(self, connection: Any, ref: int, text: str) -> None: ...

	async def list_targets(self, connection: Any) -> list[TargetInfo]: ...

	async def sleep(self, connection: Any, seconds: float) -> None: ...

	async def close(self) -> None: ...


class ChromeDriverNotStartedError(RuntimeError):
	"""Raised when attempting to use ChromeDriver before launch()."""


async def detect_browser_path(config: ChromeDriverConfig) -> str | None:
	"""Resolve the Chrome binary: explicit config first, then known install paths."""
	if config.browser_path:
		return config.browser_path
	for candidate in DEFAULT_BROWSER_CANDIDATES:
		path = anyio.Path(candidate)
		if await path.exists() and os.access(candidate, os.X_OK):
			return candidate
	# Selenium Manager locates a browser on its own when nothing is found here.
	return None


class ChromeDriver:
	"""Thin async wrapper around Selenium Chrome WebDriver."""

	def __init__(self, config: ChromeDriverConfig | None = None):
		self.config = config or ChromeDriverConfig()
		self._driver: Any | None = None
		self._lock = asyncio.Lock()
		self._current_handle: str | None = None
		self._initial_handle: str | None = None

	@property
	def is_started(self) -> bool:
		return self._driver is not None

	def _require_driver(self) -> Any:
		if self._driver is None:
			raise ChromeDriverNotStartedError('ChromeDriver is not started. Call await launch() first.')
		return self._driver

	async def _run_sync(self, operation: Callable[[], T], timeout: float | None = None) -> T:
		"""Run a blocking Selenium operation in a thread with timeout.

		A Selenium command cannot be interrupted once sent. On timeout or
		cancellation this still waits for the worker thread to return before
		raising, so the caller keeps the driver lock until the WebDriver is idle
		and no other command can run alongside the abandoned one.
		"""
		work = asyncio.ensure_future(asyncio.to_thread(operation))
		try:
			return await asyncio.wait_for(asyncio.shield(work), timeout=timeout or self.config.command_timeout)
		except BaseException:
			if not work.done():
				await self._drain(work)
			raise

	@staticmethod
	async def _drain(work: asyncio.Future[Any]) -> None:
		while not work.done():
			try:
				await asyncio.wait({work})
			except asyncio.CancelledError:
				# Already unwinding; the original exception is re-raised by the caller.
				continue
		if not work.cancelled() and work.exception() is not None:
			logger.debug(f'Abandoned browser command finished with {type(work.exception()).__name__}')

	async def _with_driver(self, operation: Callable[[Any], T], timeout: float | None = None) -> T:
		"""Run a blocking operation while holding the driver lock, mapping failures to DriverError."""
		from selenium.common.exceptions import NoSuchWindowException, WebDriverException

		async with self._lock:
			driver = self._require_driver()
			try:
				return await self._run_sync(lambda: operation(driver), timeout=timeout)
			except NoSuchWindowException as exc:
				self._current_handle = None
				raise TargetLostError(f'target window is gone: {exc.msg or exc}') from exc
			except WebDriverException as exc:
				raise DriverError(exc.msg or str(exc)) from exc
			except asyncio.TimeoutError as exc:
				raise DriverError(f'browser command timed out after {timeout or self.config.command_timeout:.1f}s') from exc

	async def _on_target(self, connection: TargetConnection, operation: Callable[[Any], T], timeout: float | None = None) -> T:
		"""Switch to the connection's window, then run the operation."""

		def _switch_and_run(driver: Any) -> T:
			if self._current_handle != connection.target_id:
				driver.switch_to.window(connection.target_id)
				self._current_handle = connection.target_id
			return operation(driver)

		return await self._with_driver(_switch_and_run, timeout=timeout)

	def _build_options(self, browser_path: str | None) -> Any:
		from selenium.webdriver.chrome.options import Options as ChromeOptions

		options = ChromeOptions()
		if self.config.headless:
			options.add_argument('--headless=new')
		for flag in ('--disable-gpu', '--no-sandbox', '--disable-dev-shm-usage', '--disable-extensions'):
			options.add_argument(flag)
		options.add_argument(f'--window-size={self.config.window_width},{self.config.window_height}')
		for flag in self.config.extra_args:
			options.add_argument(flag)
		if browser_path:
			options.binary_location = browser_path
		return options

	async def launch(self) -> Any:
		"""Start a Chrome WebDriver session if one is not already running."""
		browser_path = await detect_browser_path(self.config)

		async with self._lock:
			if self._driver is not None:
				return self._driver

			def _start_sync() -> Any:
				try:
					from selenium import webdriver
					from selenium.common.exceptions import SessionNotCreatedException
					from selenium.webdriver.chrome.service import Service as ChromeService
				except ImportError as exc:
					raise RuntimeError('Selenium is required for Chrome support. Install with `pip install selenium`.') from exc

				options = self._build_options(browser_path)
				if self.config.chromedriver_path:
					service = ChromeService(executable_path=self.config.chromedriver_path)
				else:
					service = ChromeService()
				try:
					driver = webdriver.Chrome(service=service, options=options)
				except SessionNotCreatedException as exc:
					raise RuntimeError(f'Failed to start Chrome WebDriver session: {exc.msg or exc}') from exc
				driver.set_page_load_timeout(self.config.page_load_timeout)
				driver.set_script_timeout(self.config.script_timeout)
				return driver

			self._driver = await self._run_sync(_start_sync)
			self._initial_handle = await self._run_sync(lambda: self._driver.current_window_handle)
			self._current_handle = self._initial_handle
			logger.debug(f'Chrome started (binary: {browser_path or "selenium-managed"})')
			return self._driver

	async def close(self) -> None:
		"""Quit the browser process."""
		async with self._lock:
			if self._driver is None:
				return
			driver = self._driver
			self._driver = None
			self._current_handle = None
			self._initial_handle = None

		await self._run_sync(driver.quit)

	async def new_connection(self, allocator: Any, target_id: str | None = None) -> TargetConnection:
		"""Bind to an existing target, or open a new tab when no id is given."""
		if allocator is not self._driver:
			raise DriverError('allocator does not belong to this driver')

		if target_id is not None:

			def _attach_sync(driver: Any) -> str:
				if target_id not in driver.window_handles:
					raise LookupError(target_id)
				return target_id

			try:
				return TargetConnection(target_id=await self._with_driver(_attach_sync))
			except LookupError as exc:
				raise TargetLostError(f'target {target_id} not found') from exc

		if self._initial_handle is not None:
			handle = self._initial_handle
			self._initial_handle = None
			return TargetConnection(target_id=handle)

		def _new_tab_sync(driver: Any) -> str:
			driver.switch_to.new_window('tab')
			self._current_handle = driver.current_window_handle
			return self._current_handle

		return TargetConnection(target_id=await self._with_driver(_new_tab_sync))

	async def release(self, connection: TargetConnection) -> None:
		"""Close the connection's window if it still exists."""

		def _close_sync(driver: Any) -> None:
			if connection.target_id not in driver.window_handles:
				return
			driver.switch_to.window(connection.target_id)
			driver.close()
			self._current_handle = None

		await self._with_driver(_close_sync)

	@validate_call
	async def navigate(self, connection: TargetConnection, url: str) -> None:
		await self._on_target(connection, lambda d: d.get(url), timeout=self.config.page_load_timeout)

	async def wait_ready(self, connection: TargetConnection) -> None:
		"""Poll until the document has a body and is no longer loading."""
		end_time = asyncio.get_running_loop().time() + self.config.ready_timeout
		while True:
			if await self._on_target(connection, lambda d: d.execute_script(_READY_STATE_SCRIPT)):
				return
			if asyncio.get_running_loop().time() >= end_time:
				raise DriverError(f'page not ready after {self.config.ready_timeout:.1f}s')
			await asyncio.sleep(0.1)

	async def evaluate(self, connection: TargetConnection, script: str, *args: Any) -> Any:
		"""Execute a JavaScript function body in the connection's tab."""
		return await self._on_target(connection, lambda d: d.execute_script(script, *args), timeout=self.config.script_timeout)

	async def location(self, connection: TargetConnection) -> str:
		return await self._on_target(connection, lambda d: d.current_url)

	def _find_by_ref(self, driver: Any, ref: int) -> Any:
		from selenium.common.exceptions import NoSuchElementException
		from selenium.webdriver.common.by import By

		try:
			return driver.find_element(By.CSS_SELECTOR, f'[{REF_ATTRIBUTE}="{ref}"]')
		except NoSuchElementException as exc:
			raise DriverError(f'element with ref {ref} is no longer on the page') from exc

	@validate_call
	async def click_by_ref(self, connection: TargetConnection, ref: int) -> None:
		"""Click the element stamped with ``ref``, falling back to a JS click when intercepted."""

		def _click_sync(driver: Any) -> None:
			from selenium.common.exceptions import ElementClickInterceptedException, ElementNotInteractableException

			element = self._find_by_ref(driver, ref)
			driver.execute_script("arguments[0].scrollIntoView({block: 'center', inline: 'center'});", element)
			try:
				element.click()
			except (ElementClickInterceptedException, ElementNotInteractableException):
				driver.execute_script('arguments[0].click();', element)

		await self._on_target(connection, _click_sync)

	@validate_call
	async def type_by_ref(self, connection: TargetConnection, ref: int, text: str) -> None:
		"""Clear the element stamped with ``ref`` and type ``text`` into it."""

		def _type_sync(driver: Any) -> None:
			element = self._find_by_ref(driver, ref)
			element.clear()
			element.send_keys(text)

		await self._on_target(connection, _type_sync)

	async def list_targets(self, connection: TargetConnection) -> list[TargetInfo]:
		"""List browser targets over DevTools.

		The command is browser-wide, so the connection only picks the window
		to issue it from; any surviving window is used when that one is gone.
		"""

		def _list_sync(driver: Any) -> list[TargetInfo]:
			from selenium.common.exceptions import NoSuchWindowException

			try:
				if self._current_handle is None:
					driver.switch_to.window(connection.target_id)
					self._current_handle = connection.target_id
				payload = driver.execute_cdp_cmd('Target.getTargets', {})
			except NoSuchWindowException:
				handles = driver.window_handles
				if not handles:
					raise
				driver.switch_to.window(handles[0])
				self._current_handle = handles[0]
				payload = driver.execute_cdp_cmd('Target.getTargets', {})
			return [
				TargetInfo(target_id=info['targetId'], type=info.get('type', ''), url=info.get('url', ''))
				for info in payload.get('targetInfos', [])
			]

		return await self._with_driver(_list_sync)

	async def sleep(self, connection: TargetConnection, seconds: float) -> None:
		del connection
		await asyncio.sleep(seconds)
