import logging
import threading

logger = logging.getLogger("ERDVault")

from .constants import DEFAULT_HISTORY_DESCRIPTION, HISTORY_RETENTION
from .errors import DecryptionFailed, NotFound
from .model import Model
from .sql import generate_sql
from .utils import normalize_tags, normalize_text

UNDO_LIMIT = 50
MANUAL_SAVE_DESCRIPTION = "Manual save"


class DiagramSession:
    """Editing state around one Model: identity, dirty tracking and undo/redo.

    Mutations go through :meth:`apply`, which snapshots the Model first so the
    change can be undone. The diagram gets an identity on the first explicit
    :meth:`save`; :meth:`autosave` only ever updates an existing diagram.
    """

    def __init__(self, store, model=None, diagram_id=None, name="", description="", tags=None, thumbnail=None):
        self.store = store
        self.model = model if model is not None else Model()
        self.diagram_id = diagram_id
        self.name = normalize_text(name)
        self.description = normalize_text(description)
        self.tags = normalize_tags(tags)
        self.thumbnail = thumbnail
        self._undo = []
        self._redo = []
        self._revision = 0
        self._saved_revision = 0
        self._lock = threading.RLock()

    @classmethod
    def open(cls, store, diagram_id):
        record = store.load_diagram(diagram_id)
        return cls(
            store,
            model=record["model"],
            diagram_id=record["id"],
            name=record["name"],
            description=record["description"],
            tags=record["tags"],
            thumbnail=record["thumbnail_b64"] or None,
        )

    @classmethod
    def from_template(cls, store, template_id, name=""):
        template = store.get_template(template_id)
        session = cls(store, model=template["model"], name=name or template["name"])
        session._touch()
        return session

    @property
    def dirty(self):
        return self._revision != self._saved_revision

    @property
    def can_undo(self):
        return bool(self._undo)

    @property
    def can_redo(self):
        return bool(self._redo)

    def _touch(self):
        self._revision += 1

    def _push_undo(self, snapshot):
        self._undo.append(snapshot)
        if len(self._undo) > UNDO_LIMIT:
            del self._undo[0]

    def mark_dirty(self):
        with self._lock:
            self._touch()

    def apply(self, action, *args, **kwargs):
        """Run a Model mutation by name, e.g. ``apply("create_table", "users")``."""
        with self._lock:
            before = self.model.copy()
            result = getattr(self.model, action)(*args, **kwargs)
            self._push_undo(before)
            self._redo.clear()
            self._touch()
            return result

    def replace_model(self, model):
        with self._lock:
            self._push_undo(self.model.copy())
            self._redo.clear()
            self.model = model.copy()
            self._touch()

    def undo(self):
        with self._lock:
            if not self._undo:
                return False
            self._redo.append(self.model.copy())
            self.model = self._undo.pop()
            self._touch()
            return True

    def redo(self):
        with self._lock:
            if not self._redo:
                return False
            self._push_undo(self.model.copy())
            self.model = self._redo.pop()
            self._touch()
            return True

    def set_metadata(self, name=None, description=None, tags=None, thumbnail=None):
        with self._lock:
            if name is not None:
                self.name = normalize_text(name)
            if description is not None:
                self.description = normalize_text(description)
            if tags is not None:
                self.tags = normalize_tags(tags)
            if thumbnail is not None:
                self.thumbnail = thumbnail
            self._touch()

    def save(self, history_description=MANUAL_SAVE_DESCRIPTION):
        # A failing store call leaves the Model, the identity and the dirty flag untouched.
        with self._lock:
            revision = self._revision
            result = self.store.save_diagram(
                self.model,
                id=self.diagram_id,
                name=self.name,
                description=self.description,
                tags=self.tags,
                thumbnail=self.thumbnail,
                history_description=history_description,
            )
            self.diagram_id = result["id"]
            self._saved_revision = revision
            return result

    def autosave(self):
        with self._lock:
            if not self.diagram_id or not self.dirty:
                return False
            self.save(history_description=DEFAULT_HISTORY_DESCRIPTION)
            logger.debug("autosaved %s", self.diagram_id)
            return True

    def history(self, limit=None):
        if not self.diagram_id:
            return []
        return self.store.diagram_history(self.diagram_id, limit=HISTORY_RETENTION if limit is None else limit)

    def revert_to(self, history_id):
        """Load a History entry into the session as a new, undoable change."""
        for entry in self.history(limit=HISTORY_RETENTION):
            if entry["id"] != history_id:
                continue
            if entry["model"] is None:
                raise DecryptionFailed(entry["error"] or f"history entry {history_id} is unreadable")
            self.replace_model(entry["model"])
            return entry
        raise NotFound(f"history entry not found: {history_id}")

    def export_sql(self):
        return generate_sql(self.model)
