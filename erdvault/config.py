from .constants import DEFAULT_RELATION_COLOR, DEFAULT_TABLE_COLOR

DEFAULT_APP_CONFIG = {
    "autosave_enabled": True,
    "autosave_interval": 300,
    "default_table_color": DEFAULT_TABLE_COLOR,
    "default_relation_color": DEFAULT_RELATION_COLOR,
}

MIN_AUTOSAVE_INTERVAL = 5


def _to_bool(value, default):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    return default


def normalize_config(config: dict) -> dict:
    """Merge over the defaults and coerce every known key to its type; unknown keys are dropped."""
    merged = {**DEFAULT_APP_CONFIG, **(config or {})}
    out = {}
    out["autosave_enabled"] = _to_bool(merged.get("autosave_enabled"), DEFAULT_APP_CONFIG["autosave_enabled"])
    try:
        interval = int(float(merged.get("autosave_interval")))
    except (TypeError, ValueError):
        interval = DEFAULT_APP_CONFIG["autosave_interval"]
    out["autosave_interval"] = max(MIN_AUTOSAVE_INTERVAL, interval)
    for key in ("default_table_color", "default_relation_color"):
        value = str(merged.get(key) or "").strip()
        out[key] = value or DEFAULT_APP_CONFIG[key]
    return out
