"""JSON web API over the task engine."""

import logging

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from task_engine.config import get_config
from task_engine.core import detail as detail_mod
from task_engine.core import selection as selection_mod
from task_engine.core.errors import TaskError
from task_engine.core.evaluation import EvaluationContext, open_context
from task_engine.core.graph import prioritize_tasks
from task_engine.db.engine import init_db
from task_engine.db.models import Task

logger = logging.getLogger(__name__)

USER_COOKIE = "user"
USER_COOKIE_MAX_AGE = 365 * 24 * 60 * 60

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _get_db():
    config = get_config()
    return init_db(config.db_path)


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _resolve_user(request: Request, ctx: EvaluationContext) -> tuple[str | None, str | None]:
    """The current user and the cookie value to store, if it changes.

    ``?user=name`` selects a user and remembers it, ``?user=`` clears it, and
    otherwise the cookie is used. Unknown user names are ignored.
    """
    known = set(ctx.tree.users())
    param = request.query_params.get("user")
    if param is not None:
        if param == "":
            return None, ""
        if param in known:
            return param, param
        return None, None
    cookie = request.cookies.get(USER_COOKIE)
    return (cookie if cookie in known else None), None


def _with_user_cookie(response: JSONResponse, cookie_value: str | None) -> JSONResponse:
    if cookie_value == "":
        response.delete_cookie(USER_COOKIE)
    elif cookie_value is not None:
        response.set_cookie(USER_COOKIE, cookie_value, max_age=USER_COOKIE_MAX_AGE, samesite="lax")
    return response


# ── Handlers ──────────────────────────────────────────────────────────────────


async def api_list_tasks(request: Request):
    bucket = request.query_params.get("bucket", "ready")
    if bucket not in selection_mod.BUCKETS:
        return _error(f"Unknown bucket: {bucket}", 400)
    date_first = request.query_params.get("date_first", "").lower() in _TRUE_VALUES
    config = get_config()
    db = _get_db()
    try:
        with open_context(db, config) as ctx:
            root_path = request.query_params.get("root") or config.root_page
            root = ctx.tree.get_page(root_path)
            if root is None:
                return _error(f"Page not found: {root_path}", 404)
            user, cookie_value = _resolve_user(request, ctx)
            try:
                tasks = selection_mod.get_tasks(ctx, bucket, root, user)
                tasks = prioritize_tasks(ctx, tasks, date_first)
                summary = detail_mod.tasks_summary(ctx, tasks)
            except TaskError as e:
                logger.warning("Listing %s tasks under %s failed: %s", bucket, root.path, e)
                return _error(str(e), 422)
            response = JSONResponse({
                "bucket": bucket,
                "root": root.path,
                "user": user,
                "date_first": date_first,
                "tasks": summary,
            })
            return _with_user_cookie(response, cookie_value)
    finally:
        db.close()


async def api_get_task(request: Request):
    page_path = request.query_params.get("page")
    task_id = request.query_params.get("id")
    if not page_path or not task_id:
        return _error("Both page and id are required", 400)
    db = _get_db()
    try:
        with open_context(db) as ctx:
            page = ctx.tree.get_page(page_path)
            task = page.element(task_id) if page else None
            if not isinstance(task, Task):
                return _error(f"Task not found: {page_path}#{task_id}", 404)
            try:
                return JSONResponse(detail_mod.task_detail(ctx, task))
            except TaskError as e:
                logger.warning("Task detail for %s failed: %s", task.ref, e)
                return _error(str(e), 422)
    finally:
        db.close()


async def api_list_users(request: Request):
    db = _get_db()
    try:
        with open_context(db) as ctx:
            user, cookie_value = _resolve_user(request, ctx)
            response = JSONResponse({"users": ctx.tree.users(), "current": user})
            return _with_user_cookie(response, cookie_value)
    finally:
        db.close()


async def api_list_pages(request: Request):
    db = _get_db()
    try:
        with open_context(db) as ctx:
            user, cookie_value = _resolve_user(request, ctx)
            try:
                pages = [
                    {
                        "path": page.path,
                        "title": page.title,
                        "parent": page.parent,
                        "accessible": page.accessible,
                        "tasks": len(page.tasks),
                        "assigned": selection_mod.has_assigned_task(ctx, page, user) if user else None,
                    }
                    for page in ctx.tree.pages
                ]
            except TaskError as e:
                logger.warning("Listing pages for %s failed: %s", user, e)
                return _error(str(e), 422)
            return _with_user_cookie(JSONResponse(pages), cookie_value)
    finally:
        db.close()


# ── App ───────────────────────────────────────────────────────────────────────


def create_app() -> Starlette:
    routes = [
        Route("/api/tasks", api_list_tasks),
        Route("/api/task", api_get_task),
        Route("/api/users", api_list_users),
        Route("/api/pages", api_list_pages),
    ]
    return Starlette(routes=routes)


def run_server(host: str = "127.0.0.1", port: int = 8787):
    app = create_app()
    uvicorn.run(app, host=host, port=port)
