"""Most recent page snapshot and ref validation."""

from pydantic import BaseModel, ConfigDict, Field

from chrome_session.views import ActionValidationError


class Snapshot(BaseModel):
	"""Textual page state with numbered element refs."""

	model_config = ConfigDict(extra='forbid', frozen=True)

	text: str
	has_refs: bool = False
	max_ref: int = Field(default=0, ge=0)
	ref_hrefs: dict[int, str] = Field(default_factory=dict)


class SnapshotCache:
	"""Holds exactly one snapshot; refs are only valid against it."""

	def __init__(self) -> None:
		self._current: Snapshot | None = None

	@property
	def current(self) -> Snapshot | None:
		return self._current

	def record(self, snapshot: Snapshot) -> None:
		self._current = snapshot

	def is_valid_ref(self, ref: int) -> bool:
		snapshot = self._current
		return snapshot is not None and snapshot.has_refs and 1 <= ref <= snapshot.max_ref

	def require_ref(self, ref: int) -> None:
		"""Raise a descriptive ActionValidationError unless ``ref`` is valid."""
		snapshot = self._current
		if snapshot is None or not snapshot.has_refs:
			raise ActionValidationError('no snapshot available; call snapshot first')
		if not 1 <= ref <= snapshot.max_ref:
			raise ActionValidationError(f'ref {ref} not found in current snapshot (valid range: 1-{snapshot.max_ref})')

	def href_for(self, ref: int) -> str | None:
		if self._current is None:
			return None
		return self._current.ref_hrefs.get(ref) or None
