import base64
import binascii
import json
import logging
import os
import sqlite3
import threading
import uuid

logger = logging.getLogger("ERDVault")

from .builtin_templates import SYSTEM_TEMPLATES
from .config import DEFAULT_APP_CONFIG, normalize_config
from .constants import (
    APP_CONFIG_SETTING,
    BUNDLE_FORMAT_VERSION,
    DEFAULT_DIAGRAM_NAME,
    DEFAULT_HISTORY_DESCRIPTION,
    DEFAULT_IMPORT_NAME,
    DEFAULT_TEMPLATE_CATEGORY,
    DEFAULT_TEMPLATE_NAME,
    ENCRYPTION_KEY_SETTING,
    HISTORY_DEFAULT_LIMIT,
    HISTORY_RETENTION,
    SCHEMA_VERSION,
    SEARCH_DEFAULT_LIMIT,
)
from .crypto import CryptoEnvelope, generate_key
from .errors import ConstraintViolation, DecryptionFailed, InvalidBundle, IOFailure, NotFound
from .model import Model
from .paths import get_db_path
from .schema import SCHEMA_SQL
from .sql import generate_sql
from .thumbnails import make_thumbnail_png
from .utils import fold, json_dumps, normalize_tags, normalize_text, now_iso, stable_hash

SUMMARY_COLUMNS = (
    "id, name, description, tags_json, thumbnail_png, thumbnail_width, thumbnail_height, created_at, updated_at"
)


def _sql_fold(value):
    return fold(value) if value is not None else ""


class ERDVaultStore:
    """Diagrams, their history, templates and settings in one SQLite file.

    Every public operation opens its own connection and commits once, so a
    failure part-way leaves nothing behind. Writes are serialized through a
    store-wide lock.
    """

    _instance = None
    _lock = threading.Lock()

    @classmethod
    def get(cls):
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def __init__(self, db_path=None):
        self.db_path = db_path or get_db_path()
        self._write_lock = threading.RLock()
        try:
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        except OSError as exc:
            raise IOFailure(f"cannot create data directory for {self.db_path}: {exc}") from exc
        self._init_db()
        self.envelope = self._init_encryption()
        logger.info("store ready at %s", self.db_path)

    def _connect(self):
        try:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA busy_timeout = 5000")
        except sqlite3.Error as exc:
            raise IOFailure(f"cannot open database {self.db_path}: {exc}") from exc
        conn.create_function("py_fold", 1, _sql_fold, deterministic=True)
        return conn

    def _init_db(self):
        conn = self._connect()
        try:
            conn.executescript(SCHEMA_SQL)
            conn.execute(
                "INSERT OR REPLACE INTO meta(key,value) VALUES('schema_version', ?)",
                (SCHEMA_VERSION,),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise IOFailure(f"cannot initialize database {self.db_path}: {exc}") from exc
        finally:
            conn.close()

    def _init_encryption(self):
        row = self._get_setting_row(ENCRYPTION_KEY_SETTING)
        if row is None:
            key = generate_key()
            self.set_setting(ENCRYPTION_KEY_SETTING, key)
            logger.info("generated a new encryption key")
            return CryptoEnvelope(key)
        try:
            key = json.loads(row["value"])
        except (json.JSONDecodeError, TypeError) as exc:
            # Never regenerate here: a new key would orphan every stored payload.
            raise DecryptionFailed(f"stored encryption key is unreadable: {exc}") from exc
        return CryptoEnvelope(key)

    # ── settings ──

    def _get_setting_row(self, key):
        conn = self._connect()
        try:
            return conn.execute("SELECT value, updated_at FROM settings WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise IOFailure(f"reading setting {key!r} failed: {exc}") from exc
        finally:
            conn.close()

    def get_setting(self, key, default=None):
        row = self._get_setting_row(key)
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except (json.JSONDecodeError, TypeError):
            logger.warning("setting %r holds unreadable JSON, using default", key)
            return default

    def set_setting(self, key, value):
        with self._write_lock:
            conn = self._connect()
            try:
                conn.execute(
                    "INSERT OR REPLACE INTO settings(key, value, updated_at) VALUES(?, ?, ?)",
                    (key, json.dumps(value, ensure_ascii=False), now_iso()),
                )
                conn.commit()
            except sqlite3.Error as exc:
                raise IOFailure(f"writing setting {key!r} failed: {exc}") from exc
            finally:
                conn.close()

    def delete_setting(self, key):
        with self._write_lock:
            conn = self._connect()
            try:
                cur = conn.execute("DELETE FROM settings WHERE key = ?", (key,))
                conn.commit()
                return cur.rowcount > 0
            except sqlite3.Error as exc:
                raise IOFailure(f"deleting setting {key!r} failed: {exc}") from exc
            finally:
                conn.close()

    def get_all_settings(self, include_secrets=False):
        conn = self._connect()
        try:
            rows = conn.execute("SELECT key, value FROM settings ORDER BY key ASC").fetchall()
        except sqlite3.Error as exc:
            raise IOFailure(f"reading settings failed: {exc}") from exc
        finally:
            conn.close()
        out = {}
        for row in rows:
            if row["key"] == ENCRYPTION_KEY_SETTING and not include_secrets:
                continue
            try:
                out[row["key"]] = json.loads(row["value"])
            except (json.JSONDecodeError, TypeError):
                logger.warning("setting %r holds unreadable JSON, skipped", row["key"])
        return out

    def get_app_config(self) -> dict:
        stored = self.get_setting(APP_CONFIG_SETTING, {})
        if not isinstance(stored, dict):
            stored = {}
        return normalize_config({**DEFAULT_APP_CONFIG, **stored})

    def set_app_config(self, config: dict) -> dict:
        config = normalize_config(config)
        self.set_setting(APP_CONFIG_SETTING, config)
        return config

    # ── payload helpers ──

    @staticmethod
    def _model_payload(model):
        if isinstance(model, Model):
            return model.to_dict()
        # Round-trip raw dicts through Model so stored payloads always satisfy the invariants.
        return Model.from_dict(model).to_dict()

    def _decode_model(self, data, is_encrypted=True):
        if is_encrypted:
            payload = self.envelope.decrypt(data)
        else:
            try:
                payload = json.loads(data)
            except (json.JSONDecodeError, TypeError) as exc:
                raise DecryptionFailed(f"plain payload is not valid JSON: {exc}") from exc
        try:
            return Model.from_dict(payload)
        except ConstraintViolation as exc:
            raise DecryptionFailed(f"payload is not a diagram model: {exc}") from exc

    @staticmethod
    def _prepare_thumbnail(thumbnail):
        if thumbnail is None or thumbnail == "" or thumbnail == b"":
            return None, None, None
        if isinstance(thumbnail, str):
            raw = thumbnail.split(",", 1)[-1]
            try:
                thumbnail = base64.b64decode(raw, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError(f"thumbnail is not valid base64: {exc}") from exc
        if not isinstance(thumbnail, (bytes, bytearray)):
            raise ValueError("thumbnail must be image bytes or a base64 string")
        png, width, height = make_thumbnail_png(thumbnail)
        return sqlite3.Binary(png), width, height

    @staticmethod
    def _row_to_summary(row, include_thumbnail=True):
        thumbnail_b64 = ""
        if include_thumbnail and row["thumbnail_png"] is not None:
            thumbnail_b64 = base64.b64encode(bytes(row["thumbnail_png"])).decode("ascii")
        return {
            "id": row["id"],
            "name": row["name"],
            "description": row["description"],
            "tags": json.loads(row["tags_json"] or "[]"),
            "has_thumbnail": row["thumbnail_png"] is not None,
            "thumbnail_b64": thumbnail_b64,
            "thumbnail_width": row["thumbnail_width"],
            "thumbnail_height": row["thumbnail_height"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    # ── diagrams ──

    def _write_diagram(self, conn, payload, diagram_id, name, description, tags, thumbnail):
        encrypted = self.envelope.encrypt(payload)
        thumb_blob, thumb_w, thumb_h = thumbnail
        now = now_iso()
        conn.execute(
            """
            INSERT INTO diagrams(
              id,name,description,data,tags_json,thumbnail_png,thumbnail_width,thumbnail_height,
              is_encrypted,model_hash,created_at,updated_at
            ) VALUES(?,?,?,?,?,?,?,?,1,?,?,?)
            ON CONFLICT(id) DO UPDATE SET
              name=excluded.name,
              description=excluded.description,
              data=excluded.data,
              tags_json=excluded.tags_json,
              thumbnail_png=excluded.thumbnail_png,
              thumbnail_width=excluded.thumbnail_width,
              thumbnail_height=excluded.thumbnail_height,
              is_encrypted=excluded.is_encrypted,
              model_hash=excluded.model_hash,
              updated_at=excluded.updated_at
            """,
            (
                diagram_id,
                name,
                description,
                encrypted,
                json_dumps(tags),
                thumb_blob,
                thumb_w,
                thumb_h,
                stable_hash(payload),
                now,
                now,
            ),
        )

    def _append_history(self, conn, diagram_id, payload, description):
        conn.execute(
            "INSERT INTO diagram_history(id,diagram_id,data,description,created_at) VALUES(?,?,?,?,?)",
            (
                f"hist_{uuid.uuid4().hex}",
                diagram_id,
                self.envelope.encrypt(payload),
                normalize_text(description),
                now_iso(),
            ),
        )
        self._prune_history(conn, diagram_id)

    @staticmethod
    def _prune_history(conn, diagram_id):
        cur = conn.execute(
            """
            DELETE FROM diagram_history
            WHERE diagram_id = ? AND seq NOT IN (
              SELECT seq FROM diagram_history
              WHERE diagram_id = ?
              ORDER BY created_at DESC, seq DESC
              LIMIT ?
            )
            """,
            (diagram_id, diagram_id, HISTORY_RETENTION),
        )
        if cur.rowcount:
            logger.debug("pruned %d history entries of %s", cur.rowcount, diagram_id)

    def save_diagram(
        self,
        model,
        id=None,
        name=None,
        description="",
        tags=None,
        thumbnail=None,
        record_history=True,
        history_description=DEFAULT_HISTORY_DESCRIPTION,
    ):
        """Create (no ``id``) or fully replace (``id`` given) a diagram.

        The model is encrypted before it is written. With ``record_history``
        a history entry for the same snapshot is appended and the history of
        the diagram is trimmed to the newest entries, all in one transaction.
        """
        payload = self._model_payload(model)
        diagram_id = normalize_text(id) or f"diagram_{uuid.uuid4().hex}"
        name = normalize_text(name) or DEFAULT_DIAGRAM_NAME
        description = normalize_text(description)
        tags = normalize_tags(tags)
        thumbnail = self._prepare_thumbnail(thumbnail)

        with self._write_lock:
            conn = self._connect()
            try:
                self._write_diagram(conn, payload, diagram_id, name, description, tags, thumbnail)
                if record_history:
                    self._append_history(conn, diagram_id, payload, history_description)
                conn.commit()
            except sqlite3.Error as exc:
                raise IOFailure(f"saving diagram {diagram_id} failed: {exc}") from exc
            finally:
                conn.close()
        logger.info("diagram saved: %s (history=%s)", diagram_id, bool(record_history))
        return {"id": diagram_id}

    def _get_diagram_row(self, diagram_id):
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM diagrams WHERE id = ?", (diagram_id,)).fetchone()
        except sqlite3.Error as exc:
            raise IOFailure(f"reading diagram {diagram_id} failed: {exc}") from exc
        finally:
            conn.close()
        if not row:
            raise NotFound(f"diagram not found: {diagram_id}")
        return row

    def has_diagram(self, diagram_id):
        conn = self._connect()
        try:
            return conn.execute("SELECT 1 FROM diagrams WHERE id = ?", (diagram_id,)).fetchone() is not None
        except sqlite3.Error as exc:
            raise IOFailure(f"reading diagram {diagram_id} failed: {exc}") from exc
        finally:
            conn.close()

    def load_diagram(self, diagram_id):
        row = self._get_diagram_row(diagram_id)
        out = self._row_to_summary(row)
        out["model"] = self._decode_model(row["data"], bool(row["is_encrypted"]))
        out["is_encrypted"] = bool(row["is_encrypted"])
        out["model_hash"] = row["model_hash"]
        return out

    def get_diagram_thumbnail(self, diagram_id):
        row = self._get_diagram_row(diagram_id)
        blob = row["thumbnail_png"]
        if blob is None:
            return None
        return {
            "png": bytes(blob),
            "width": row["thumbnail_width"],
            "height": row["thumbnail_height"],
        }

    def list_diagrams(self, include_thumbnail=True):
        conn = self._connect()
        try:
            rows = conn.execute(
                f"SELECT {SUMMARY_COLUMNS} FROM diagrams ORDER BY updated_at DESC, id ASC"
            ).fetchall()
        except sqlite3.Error as exc:
            raise IOFailure(f"listing diagrams failed: {exc}") from exc
        finally:
            conn.close()
        return [self._row_to_summary(r, include_thumbnail=include_thumbnail) for r in rows]

    def search_diagrams(self, query="", tags=None, limit=SEARCH_DEFAULT_LIMIT, include_thumbnail=True):
        q = fold(query)
        wanted_tags = [fold(t) for t in normalize_tags(tags)]
        logger.debug("search_diagrams input: q=%r tags=%s limit=%s", q, wanted_tags, limit)

        where = []
        params = []
        if q:
            where.append("(instr(py_fold(d.name), ?) > 0 OR instr(py_fold(d.description), ?) > 0)")
            params.extend([q, q])
        for tag in wanted_tags:
            where.append("EXISTS (SELECT 1 FROM json_each(d.tags_json) AS jt WHERE py_fold(jt.value) = ?)")
            params.append(tag)

        sql = f"""
        SELECT {', '.join('d.' + c.strip() for c in SUMMARY_COLUMNS.split(','))}
        FROM diagrams d
        {('WHERE ' + ' AND '.join(where)) if where else ''}
        ORDER BY d.updated_at DESC, d.id ASC
        LIMIT ?
        """
        conn = self._connect()
        try:
            rows = conn.execute(sql, params + [max(0, int(limit))]).fetchall()
        except sqlite3.Error as exc:
            raise IOFailure(f"searching diagrams failed: {exc}") from exc
        finally:
            conn.close()
        logger.debug("search_diagrams rows=%d", len(rows))
        return [self._row_to_summary(r, include_thumbnail=include_thumbnail) for r in rows]

    def delete_diagram(self, diagram_id):
        with self._write_lock:
            conn = self._connect()
            try:
                row = conn.execute("SELECT id FROM diagrams WHERE id = ?", (diagram_id,)).fetchone()
                if not row:
                    raise NotFound(f"diagram not found: {diagram_id}")
                cur = conn.execute("DELETE FROM diagram_history WHERE diagram_id = ?", (diagram_id,))
                history_deleted = cur.rowcount
                conn.execute("DELETE FROM diagrams WHERE id = ?", (diagram_id,))
                conn.commit()
            except sqlite3.Error as exc:
                raise IOFailure(f"deleting diagram {diagram_id} failed: {exc}") from exc
            finally:
                conn.close()
        logger.info("diagram deleted: %s (%d history entries)", diagram_id, history_deleted)
        return {"id": diagram_id, "history_deleted": history_deleted}

    def diagram_history(self, diagram_id, limit=HISTORY_DEFAULT_LIMIT):
        """Newest-first history of a diagram.

        Entries are decrypted one by one; an entry that cannot be read comes
        back with ``model`` set to ``None`` and the reason in ``error``.
        """
        self._get_diagram_row(diagram_id)
        conn = self._connect()
        try:
            rows = conn.execute(
                """
                SELECT id, diagram_id, data, description, created_at
                FROM diagram_history
                WHERE diagram_id = ?
                ORDER BY created_at DESC, seq DESC
                LIMIT ?
                """,
                (diagram_id, max(0, int(limit))),
            ).fetchall()
        except sqlite3.Error as exc:
            raise IOFailure(f"reading history of {diagram_id} failed: {exc}") from exc
        finally:
            conn.close()

        items = []
        for r in rows:
            item = {
                "id": r["id"],
                "diagram_id": r["diagram_id"],
                "model": None,
                "description": r["description"],
                "created_at": r["created_at"],
                "error": None,
            }
            try:
                item["model"] = self._decode_model(r["data"])
            except DecryptionFailed as exc:
                logger.warning("history entry %s of %s is unreadable: %s", r["id"], diagram_id, exc)
                item["error"] = str(exc)
            items.append(item)
        return items

    def count_history(self, diagram_id):
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT COUNT(*) AS total FROM diagram_history WHERE diagram_id = ?",
                (diagram_id,),
            ).fetchone()
            return int(row["total"] if row else 0)
        except sqlite3.Error as exc:
            raise IOFailure(f"counting history of {diagram_id} failed: {exc}") from exc
        finally:
            conn.close()

    # ── export / import ──

    def export_diagram(self, diagram_id, include_history=False):
        record = self.load_diagram(diagram_id)
        diagram = {
            "id": record["id"],
            "name": record["name"],
            "description": record["description"],
            "tags": record["tags"],
            "data": record["model"].to_dict(),
            "createdAt": record["created_at"],
            "updatedAt": record["updated_at"],
        }
        if record["thumbnail_b64"]:
            diagram["thumbnail"] = record["thumbnail_b64"]
        bundle = {
            "version": BUNDLE_FORMAT_VERSION,
            "exportedAt": now_iso(),
            "diagram": diagram,
        }
        if include_history:
            history = []
            for item in self.diagram_history(diagram_id, limit=HISTORY_RETENTION):
                if item["model"] is None:
                    logger.warning("history entry %s left out of export: %s", item["id"], item["error"])
                    continue
                history.append(
                    {
                        "id": item["id"],
                        "data": item["model"].to_dict(),
                        "createdAt": item["created_at"],
                        "description": item["description"],
                    }
                )
            bundle["history"] = history
        return bundle

    def export_diagram_json(self, diagram_id, include_history=False):
        return json.dumps(self.export_diagram(diagram_id, include_history=include_history), ensure_ascii=False, indent=2)

    def export_sql(self, diagram_id):
        return generate_sql(self.load_diagram(diagram_id)["model"])

    @staticmethod
    def _parse_bundle(bundle):
        if isinstance(bundle, (bytes, bytearray)):
            try:
                bundle = bundle.decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise InvalidBundle(f"bundle must be UTF-8 text: {exc}") from exc
        if isinstance(bundle, str):
            try:
                bundle = json.loads(bundle or "null")
            except json.JSONDecodeError as exc:
                raise InvalidBundle(f"bundle is not valid JSON: {exc}") from exc
        if not isinstance(bundle, dict):
            raise InvalidBundle("bundle must be a JSON object")

        if "diagram" not in bundle and "version" not in bundle:
            # Bare model from older exports.
            diagram = {"name": DEFAULT_IMPORT_NAME, "data": bundle}
            history = []
        else:
            diagram = bundle.get("diagram")
            history = bundle.get("history") or []
        if not isinstance(diagram, dict):
            raise InvalidBundle("bundle has no diagram object")
        if not isinstance(diagram.get("data"), dict):
            raise InvalidBundle("bundle diagram has no model payload")
        if not normalize_text(diagram.get("name")):
            raise InvalidBundle("bundle diagram has no name")
        if not isinstance(history, list):
            raise InvalidBundle("bundle history must be a list")
        if not isinstance(diagram.get("tags") or [], (list, str)):
            raise InvalidBundle("bundle diagram tags must be a list or a comma-separated string")

        try:
            payload = Model.from_dict(diagram["data"]).to_dict()
            replay = []
            for item in history:
                if not isinstance(item, dict) or not isinstance(item.get("data"), dict):
                    raise InvalidBundle("bundle history entry has no model payload")
                replay.append((Model.from_dict(item["data"]).to_dict(), item.get("description") or ""))
        except ConstraintViolation as exc:
            raise InvalidBundle(f"bundle model is malformed: {exc}") from exc
        return diagram, payload, replay

    def import_diagram(self, bundle, generate_new_id=True):
        """Store a bundle as a diagram; its history is replayed as fresh entries, oldest first."""
        diagram, payload, replay = self._parse_bundle(bundle)
        diagram_id = normalize_text(diagram.get("id"))
        if generate_new_id or not diagram_id:
            diagram_id = f"diagram_{uuid.uuid4().hex}"
        try:
            thumbnail = self._prepare_thumbnail(diagram.get("thumbnail"))
        except ValueError as exc:
            raise InvalidBundle(str(exc)) from exc

        with self._write_lock:
            conn = self._connect()
            try:
                self._write_diagram(
                    conn,
                    payload,
                    diagram_id,
                    normalize_text(diagram.get("name")),
                    normalize_text(diagram.get("description")),
                    normalize_tags(diagram.get("tags")),
                    thumbnail,
                )
                # Exports list history newest first.
                for history_payload, description in reversed(replay):
                    self._append_history(conn, diagram_id, history_payload, description)
                conn.commit()
            except sqlite3.Error as exc:
                raise IOFailure(f"importing diagram {diagram_id} failed: {exc}") from exc
            finally:
                conn.close()
        logger.info("diagram imported: %s (%d history entries)", diagram_id, len(replay))
        return {"id": diagram_id, "history_imported": len(replay)}

    # ── templates ──

    def save_template(
        self,
        model,
        id=None,
        name=None,
        description="",
        category=DEFAULT_TEMPLATE_CATEGORY,
        is_system=False,
    ):
        payload = self._model_payload(model)
        tpl_id = normalize_text(id) or f"tpl_{uuid.uuid4().hex}"
        name = normalize_text(name) or DEFAULT_TEMPLATE_NAME
        category = normalize_text(category) or DEFAULT_TEMPLATE_CATEGORY
        encrypted = self.envelope.encrypt(payload)

        with self._write_lock:
            conn = self._connect()
            try:
                conn.execute(
                    """
                    INSERT INTO templates(id,name,description,data,category,is_system,created_at)
                    VALUES(?,?,?,?,?,?,?)
                    ON CONFLICT(id) DO UPDATE SET
                      name=excluded.name,
                      description=excluded.description,
                      data=excluded.data,
                      category=excluded.category,
                      is_system=excluded.is_system
                    """,
                    (tpl_id, name, normalize_text(description), encrypted, category, 1 if is_system else 0, now_iso()),
                )
                conn.commit()
            except sqlite3.Error as exc:
                raise IOFailure(f"saving template {tpl_id} failed: {exc}") from exc
            finally:
                conn.close()
        return {"id": tpl_id}

    def _row_to_template(self, row):
        return {
            "id": row["id"],
            "name": row["name"],
            "description": row["description"],
            "model": self._decode_model(row["data"]),
            "category": row["category"],
            "is_system": bool(row["is_system"]),
            "created_at": row["created_at"],
        }

    def list_templates(self, category=None):
        sql = "SELECT * FROM templates"
        params = []
        category = normalize_text(category)
        if category:
            sql += " WHERE category = ?"
            params.append(category)
        sql += " ORDER BY is_system DESC, name ASC, id ASC"
        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise IOFailure(f"listing templates failed: {exc}") from exc
        finally:
            conn.close()
        return [self._row_to_template(r) for r in rows]

    def get_template(self, tpl_id):
        conn = self._connect()
        try:
            row = conn.execute("SELECT * FROM templates WHERE id = ?", (tpl_id,)).fetchone()
        except sqlite3.Error as exc:
            raise IOFailure(f"reading template {tpl_id} failed: {exc}") from exc
        finally:
            conn.close()
        if not row:
            raise NotFound(f"template not found: {tpl_id}")
        return self._row_to_template(row)

    def delete_template(self, tpl_id):
        with self._write_lock:
            conn = self._connect()
            try:
                cur = conn.execute("DELETE FROM templates WHERE id = ?", (tpl_id,))
                if cur.rowcount == 0:
                    raise NotFound(f"template not found: {tpl_id}")
                conn.commit()
            except sqlite3.Error as exc:
                raise IOFailure(f"deleting template {tpl_id} failed: {exc}") from exc
            finally:
                conn.close()
        return {"id": tpl_id}

    def ensure_system_templates(self):
        conn = self._connect()
        try:
            existing = {r["id"] for r in conn.execute("SELECT id FROM templates WHERE is_system = 1").fetchall()}
        except sqlite3.Error as exc:
            raise IOFailure(f"reading templates failed: {exc}") from exc
        finally:
            conn.close()
        installed = 0
        for builtin in SYSTEM_TEMPLATES:
            if builtin["id"] in existing:
                continue
            self.save_template(
                builtin["build"](),
                id=builtin["id"],
                name=builtin["name"],
                description=builtin["description"],
                category=builtin["category"],
                is_system=True,
            )
            installed += 1
        if installed:
            logger.info("installed %d system templates", installed)
        return installed

    # ── maintenance ──

    def vacuum(self):
        with self._write_lock:
            conn = self._connect()
            try:
                conn.execute("VACUUM")
            except sqlite3.Error as exc:
                raise IOFailure(f"vacuum failed: {exc}") from exc
            finally:
                conn.close()

    def backup(self, backup_path):
        with self._write_lock:
            conn = self._connect()
            try:
                dest = sqlite3.connect(backup_path)
                try:
                    conn.backup(dest)
                finally:
                    dest.close()
            except sqlite3.Error as exc:
                raise IOFailure(f"backup to {backup_path} failed: {exc}") from exc
            finally:
                conn.close()
        logger.info("backup written to %s", backup_path)
        return {"path": backup_path}

    def get_stats(self):
        conn = self._connect()
        try:
            counts = {}
            for key, table in (("diagrams", "diagrams"), ("templates", "templates"), ("history_records", "diagram_history")):
                counts[key] = int(conn.execute(f"SELECT COUNT(*) AS total FROM {table}").fetchone()["total"])
        except sqlite3.Error as exc:
            raise IOFailure(f"reading stats failed: {exc}") from exc
        finally:
            conn.close()
        try:
            counts["database_size"] = os.path.getsize(self.db_path)
        except OSError as exc:
            raise IOFailure(f"cannot stat {self.db_path}: {exc}") from exc
        return counts
