import hashlib
import json
import re
from datetime import datetime, timezone

from .errors import ConstraintViolation


def now_iso():
    # Microsecond precision keeps back-to-back saves ordered.
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


_ws_re = re.compile(r"\s+")


def normalize_text(s):
    if s is None:
        return ""
    s = str(s).strip()
    s = _ws_re.sub(" ", s)
    return s


def normalize_tags(tags):
    if isinstance(tags, str):
        tags = tags.split(",")
    elif tags is not None and not isinstance(tags, (list, tuple, set)):
        raise ConstraintViolation(f"tags must be a list or a comma-separated string, got {type(tags).__name__}")
    out = []
    seen = set()
    for t in tags or []:
        t = normalize_text(t)
        if not t:
            continue
        key = t.casefold()
        if key in seen:
            continue
        seen.add(key)
        out.append(t)
    return out


def fold(s):
    return normalize_text(s).casefold()


def json_dumps(obj):
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def stable_hash(payload_obj):
    # Stable content hash for change detection.
    raw = json_dumps(payload_obj).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()
