import json
import logging
import re
from datetime import datetime, timezone

from aiohttp import web

from .constants import ENCRYPTION_KEY_SETTING, HISTORY_DEFAULT_LIMIT, SEARCH_DEFAULT_LIMIT
from .db import ERDVaultStore
from .errors import ConstraintViolation, DecryptionFailed, InvalidBundle, IOFailure, NotFound
from .model import Model
from .sql import generate_sql

logger = logging.getLogger("ERDVault")

STORE_KEY = web.AppKey("store", ERDVaultStore)

_TRUE = {"1", "true", "yes", "on"}
_filename_re = re.compile(r"[^A-Za-z0-9_-]+")


def _json_response(obj, status=200):
    return web.Response(
        status=status,
        text=json.dumps(obj, ensure_ascii=False),
        content_type="application/json",
    )


def _bad_request(msg):
    return _json_response({"error": msg}, status=400)


async def _read_json(request):
    try:
        return await request.json(), None
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, _bad_request("request body is not valid JSON")


def _int_query(request, name, default, lo, hi):
    try:
        return max(lo, min(hi, int(request.query.get(name, default))))
    except (TypeError, ValueError):
        return default


def _download_name(stem, ext):
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    stem = _filename_re.sub("_", stem).strip("_") or "diagram"
    return f"erdvault-{stem}-{stamp}.{ext}"


def _attachment(text, content_type, filename):
    return web.Response(
        text=text,
        content_type=content_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _diagram_out(record):
    out = dict(record)
    out["model"] = record["model"].to_dict()
    return out


def _template_out(template):
    out = dict(template)
    out["model"] = template["model"].to_dict()
    return out


@web.middleware
async def error_middleware(request, handler):
    try:
        return await handler(request)
    except NotFound as exc:
        return _json_response({"error": str(exc)}, status=404)
    except (InvalidBundle, ConstraintViolation) as exc:
        return _bad_request(str(exc))
    except DecryptionFailed as exc:
        logger.warning("%s %s: %s", request.method, request.path, exc)
        return _json_response({"error": str(exc)}, status=422)
    except IOFailure as exc:
        logger.exception("%s %s failed", request.method, request.path)
        return _json_response({"error": str(exc)}, status=500)


routes = web.RouteTableDef()


@routes.get("/erdvault/health")
async def health(request):
    store = request.app[STORE_KEY]
    return _json_response({"ok": True, "db_path": store.db_path})


@routes.get("/erdvault/stats")
async def stats(request):
    return _json_response(request.app[STORE_KEY].get_stats())


@routes.get("/erdvault/diagrams")
async def list_diagrams(request):
    store = request.app[STORE_KEY]
    q = request.query.get("q", "")
    tags = [t.strip() for t in request.query.get("tags", "").split(",") if t.strip()]
    limit = _int_query(request, "limit", SEARCH_DEFAULT_LIMIT, 1, 500)
    with_thumbnails = request.query.get("thumbnails", "1").strip().lower() in _TRUE
    if q.strip() or tags:
        items = store.search_diagrams(q, tags=tags, limit=limit, include_thumbnail=with_thumbnails)
    else:
        items = store.list_diagrams(include_thumbnail=with_thumbnails)[:limit]
    return _json_response({"items": items, "limit": limit})


def _save_kwargs(payload):
    return {
        "name": payload.get("name"),
        "description": payload.get("description", ""),
        "tags": payload.get("tags"),
        "thumbnail": payload.get("thumbnail_b64") or None,
        "record_history": payload.get("record_history", True) is not False,
        "history_description": payload.get("history_description") or "Manual save",
    }


@routes.post("/erdvault/diagrams")
async def create_diagram(request):
    payload, error = await _read_json(request)
    if error:
        return error
    if not isinstance(payload, dict) or not isinstance(payload.get("model"), dict):
        return _bad_request("request needs a model object")
    try:
        result = request.app[STORE_KEY].save_diagram(payload["model"], **_save_kwargs(payload))
    except (InvalidBundle, ConstraintViolation):
        raise
    except ValueError as exc:
        return _bad_request(str(exc))
    return _json_response(result, status=201)


@routes.get("/erdvault/diagrams/{diagram_id}")
async def get_diagram(request):
    record = request.app[STORE_KEY].load_diagram(request.match_info["diagram_id"])
    return _json_response(_diagram_out(record))


@routes.put("/erdvault/diagrams/{diagram_id}")
async def update_diagram(request):
    store = request.app[STORE_KEY]
    diagram_id = request.match_info["diagram_id"]
    payload, error = await _read_json(request)
    if error:
        return error
    if not isinstance(payload, dict) or not isinstance(payload.get("model"), dict):
        return _bad_request("request needs a model object")
    # Full replace of an existing diagram only; creation goes through POST.
    if not store.has_diagram(diagram_id):
        return _json_response({"error": f"diagram not found: {diagram_id}"}, status=404)
    try:
        result = store.save_diagram(payload["model"], id=diagram_id, **_save_kwargs(payload))
    except (InvalidBundle, ConstraintViolation):
        raise
    except ValueError as exc:
        return _bad_request(str(exc))
    return _json_response(result)


@routes.delete("/erdvault/diagrams/{diagram_id}")
async def delete_diagram(request):
    result = request.app[STORE_KEY].delete_diagram(request.match_info["diagram_id"])
    return _json_response(result)


@routes.get("/erdvault/diagrams/{diagram_id}/thumbnail")
async def get_thumbnail(request):
    thumb = request.app[STORE_KEY].get_diagram_thumbnail(request.match_info["diagram_id"])
    if not thumb:
        return _json_response({"error": "diagram has no thumbnail"}, status=404)
    return web.Response(
        body=thumb["png"],
        content_type="image/png",
        headers={"Cache-Control": "no-cache"},
    )


@routes.get("/erdvault/diagrams/{diagram_id}/history")
async def get_history(request):
    limit = _int_query(request, "limit", HISTORY_DEFAULT_LIMIT, 1, 50)
    items = request.app[STORE_KEY].diagram_history(request.match_info["diagram_id"], limit=limit)
    for item in items:
        if item["model"] is not None:
            item["model"] = item["model"].to_dict()
    return _json_response({"items": items, "limit": limit})


@routes.get("/erdvault/diagrams/{diagram_id}/export")
async def export_diagram(request):
    store = request.app[STORE_KEY]
    diagram_id = request.match_info["diagram_id"]
    include_history = request.query.get("history", "").strip().lower() in _TRUE
    bundle = store.export_diagram(diagram_id, include_history=include_history)
    text = json.dumps(bundle, ensure_ascii=False, indent=2)
    return _attachment(text, "application/json", _download_name(bundle["diagram"]["name"], "json"))


@routes.get("/erdvault/diagrams/{diagram_id}/sql")
async def export_sql(request):
    store = request.app[STORE_KEY]
    record = store.load_diagram(request.match_info["diagram_id"])
    return _attachment(generate_sql(record["model"]), "application/sql", _download_name(record["name"], "sql"))


@routes.post("/erdvault/sql")
async def render_sql(request):
    payload, error = await _read_json(request)
    if error:
        return error
    model = payload.get("model") if isinstance(payload, dict) else None
    if not isinstance(model, dict):
        return _bad_request("request needs a model object")
    return web.Response(text=generate_sql(Model.from_dict(model)), content_type="application/sql")


@routes.post("/erdvault/import")
async def import_diagram(request):
    store = request.app[STORE_KEY]
    generate_new_id = request.query.get("new_id", "1").strip().lower() in _TRUE
    content_type = (request.content_type or "").lower()

    if content_type.startswith("multipart/"):
        form = await request.post()
        upload = form.get("file")
        if not upload or not getattr(upload, "file", None):
            return _bad_request("missing import file")
        bundle = upload.file.read()
    else:
        payload, error = await _read_json(request)
        if error:
            return error
        bundle = payload
        if isinstance(payload, dict) and isinstance(payload.get("content"), str):
            bundle = payload["content"]
    result = store.import_diagram(bundle, generate_new_id=generate_new_id)
    return _json_response(result, status=201)


@routes.get("/erdvault/templates")
async def list_templates(request):
    items = request.app[STORE_KEY].list_templates(category=request.query.get("category"))
    return _json_response({"items": [_template_out(t) for t in items]})


@routes.post("/erdvault/templates")
async def save_template(request):
    payload, error = await _read_json(request)
    if error:
        return error
    if not isinstance(payload, dict) or not isinstance(payload.get("model"), dict):
        return _bad_request("request needs a model object")
    result = request.app[STORE_KEY].save_template(
        payload["model"],
        id=payload.get("id"),
        name=payload.get("name"),
        description=payload.get("description", ""),
        category=payload.get("category") or "custom",
    )
    return _json_response(result, status=201)


@routes.get("/erdvault/templates/{tpl_id}")
async def get_template(request):
    template = request.app[STORE_KEY].get_template(request.match_info["tpl_id"])
    return _json_response(_template_out(template))


@routes.delete("/erdvault/templates/{tpl_id}")
async def delete_template(request):
    store = request.app[STORE_KEY]
    tpl_id = request.match_info["tpl_id"]
    if store.get_template(tpl_id)["is_system"]:
        return _bad_request("system templates cannot be deleted")
    return _json_response(store.delete_template(tpl_id))


@routes.get("/erdvault/settings")
async def get_settings(request):
    return _json_response(request.app[STORE_KEY].get_all_settings())


@routes.put("/erdvault/settings")
async def put_settings(request):
    store = request.app[STORE_KEY]
    payload, error = await _read_json(request)
    if error:
        return error
    if not isinstance(payload, dict):
        return _bad_request("request body must be a JSON object")
    if ENCRYPTION_KEY_SETTING in payload:
        return _bad_request("the encryption key cannot be changed")
    for key, value in payload.items():
        store.set_setting(str(key), value)
    return _json_response(store.get_all_settings())


@routes.get("/erdvault/config")
async def get_config(request):
    return _json_response(request.app[STORE_KEY].get_app_config())


@routes.put("/erdvault/config")
async def put_config(request):
    store = request.app[STORE_KEY]
    payload, error = await _read_json(request)
    if error:
        return error
    if not isinstance(payload, dict):
        return _bad_request("request body must be a JSON object")
    current = store.get_app_config()
    current.update(payload)
    return _json_response(store.set_app_config(current))


def create_app(store=None):
    store = store or ERDVaultStore.get()
    store.ensure_system_templates()
    app = web.Application(middlewares=[error_middleware])
    app[STORE_KEY] = store
    app.add_routes(routes)
    return app
