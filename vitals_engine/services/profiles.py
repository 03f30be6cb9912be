"""Current subject and most-recently-used subject list."""

import structlog
from pydantic import TypeAdapter, ValidationError

from vitals_engine.domain.errors import PersistenceError
from vitals_engine.domain.models import SubjectProfile
from vitals_engine.services.storage import KeyValueStore

logger = structlog.get_logger(__name__)

CURRENT_SUBJECT_KEY = "current_subject"
RECENT_SUBJECTS_KEY = "recent_subjects"

_profiles_adapter = TypeAdapter(list[SubjectProfile])


class ProfileStore:
    """Keeps the selected subject and up to ``recent_capacity`` recent ones, newest first."""

    def __init__(self, store: KeyValueStore, recent_capacity: int = 5) -> None:
        self.store = store
        self.recent_capacity = recent_capacity
        self.logger = logger.bind(component="profile_store")
        self._current: SubjectProfile | None = None
        self._loaded = False

    def current(self) -> SubjectProfile | None:
        if not self._loaded:
            self._current = self._read_current()
            self._loaded = True
        return self._current

    def current_subject_id(self) -> str | None:
        profile = self.current()
        return profile.user_id if profile else None

    def recent(self) -> list[SubjectProfile]:
        try:
            raw = self.store.get(RECENT_SUBJECTS_KEY)
        except PersistenceError as e:
            self.logger.error("recent_subjects_load_failed", error=str(e))
            return []
        if raw is None:
            return []
        try:
            return _profiles_adapter.validate_json(raw)[: self.recent_capacity]
        except ValidationError as e:
            self.logger.warning("recent_subjects_unreadable", error=str(e))
            return []

    def select(self, profile: SubjectProfile) -> list[SubjectProfile]:
        """Make ``profile`` current and move it to the front of the recent list."""
        self._current = profile
        self._loaded = True

        recent = [profile, *(p for p in self.recent() if p.user_id != profile.user_id)]
        recent = recent[: self.recent_capacity]

        try:
            self.store.set(CURRENT_SUBJECT_KEY, profile.model_dump_json(by_alias=True))
            self.store.set(
                RECENT_SUBJECTS_KEY, _profiles_adapter.dump_json(recent, by_alias=True).decode()
            )
        except PersistenceError as e:
            self.logger.error("profile_persist_failed", subject_id=profile.user_id, error=str(e))

        self.logger.info("subject_selected", subject_id=profile.user_id)
        return recent

    def clear_current(self) -> None:
        """Forget the selected subject (logout). The recent list is kept."""
        self._current = None
        self._loaded = True
        try:
            self.store.delete(CURRENT_SUBJECT_KEY)
        except PersistenceError as e:
            self.logger.error("profile_clear_failed", error=str(e))

    def _read_current(self) -> SubjectProfile | None:
        try:
            raw = self.store.get(CURRENT_SUBJECT_KEY)
        except PersistenceError as e:
            self.logger.error("current_subject_load_failed", error=str(e))
            return None
        if raw is None:
            return None
        try:
            return SubjectProfile.model_validate_json(raw)
        except ValidationError as e:
            self.logger.warning("current_subject_unreadable", error=str(e))
            return None
