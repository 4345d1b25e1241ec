"""Chrome tab lifecycle and target recovery for agent-driven browsing."""

from .actions import ACTIONS, ActionDispatcher
from .config import BrowserSessionConfig, ChromeDriverConfig
from .context import CallContext
from .driver import BrowserDriver, ChromeDriver, TargetConnection
from .session import BrowserSession
from .tool import BrowserTool
from .views import (
	ActionValidationError,
	BrowserActionError,
	DriverError,
	ExtractionError,
	OperationCancelledError,
	OperationTimeoutError,
	RecoveryFailedError,
	SessionStartupError,
	TargetInfo,
	TargetLostError,
)

__all__ = [
	'ACTIONS',
	'ActionDispatcher',
	'ActionValidationError',
	'BrowserActionError',
	'BrowserDriver',
	'BrowserSession',
	'BrowserSessionConfig',
	'BrowserTool',
	'CallContext',
	'ChromeDriver',
	'ChromeDriverConfig',
	'DriverError',
	'ExtractionError',
	'OperationCancelledError',
	'OperationTimeoutError',
	'RecoveryFailedError',
	'SessionStartupError',
	'TargetConnection',
	'TargetInfo',
	'TargetLostError',
]
