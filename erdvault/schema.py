SCHEMA_SQL = r"""
PRAGMA foreign_keys = ON;
PRAGMA journal_mode = WAL;

CREATE TABLE IF NOT EXISTS meta (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS diagrams (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  data TEXT NOT NULL,
  tags_json TEXT NOT NULL DEFAULT '[]',
  thumbnail_png BLOB,
  thumbnail_width INTEGER,
  thumbnail_height INTEGER,
  is_encrypted INTEGER NOT NULL DEFAULT 1,
  model_hash TEXT NOT NULL DEFAULT '',
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

-- seq orders entries written within the same timestamp.
CREATE TABLE IF NOT EXISTS diagram_history (
  seq INTEGER PRIMARY KEY AUTOINCREMENT,
  id TEXT NOT NULL UNIQUE,
  diagram_id TEXT NOT NULL,
  data TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  created_at TEXT NOT NULL,
  FOREIGN KEY (diagram_id) REFERENCES diagrams(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS templates (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  data TEXT NOT NULL,
  category TEXT NOT NULL DEFAULT 'custom',
  is_system INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_diagrams_updated_at ON diagrams(updated_at);
CREATE INDEX IF NOT EXISTS idx_diagram_history_diagram ON diagram_history(diagram_id, created_at);
CREATE INDEX IF NOT EXISTS idx_templates_category ON templates(category);
"""
