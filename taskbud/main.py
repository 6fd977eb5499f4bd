from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .backends import build_selector
from .settings import EnvironmentSettings, SettingsManager, resolve_settings
from .tasks import TaskService, ValidationError

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

environment = EnvironmentSettings()
DATA_DIR = Path(environment.data_dir)
DATA_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = DATA_DIR / "server.log"
SETTINGS_PATH = DATA_DIR / "settings.json"


def _configure_logging() -> logging.Logger:
    logger = logging.getLogger("taskbud")
    if logger.handlers:
        return logger
    logger.setLevel(environment.log_level.upper())
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler = RotatingFileHandler(
        LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False
    logger.debug("Logging initialised, writing to %s", LOG_FILE)
    return logger


logger = _configure_logging()


def build_service(env: Optional[EnvironmentSettings] = None) -> TaskService:
    env = env or environment
    settings_manager = SettingsManager(Path(env.data_dir) / "settings.json")
    settings = resolve_settings(settings_manager.settings, env)
    return TaskService(build_selector(settings))


def _message(status_code: int, msg: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse({"msg": msg}, status_code=status_code, headers=headers)


def _server_error() -> JSONResponse:
    return _message(status.HTTP_500_INTERNAL_SERVER_ERROR, "something went wrong")


async def _read_json(request: Request) -> Dict[str, Any]:
    body_bytes = await request.body()
    if not body_bytes:
        return {}
    try:
        payload = json.loads(body_bytes.decode("utf-8"))
    except ValueError:
        logger.debug("Ignoring malformed JSON body on %s %s", request.method, request.url.path)
        return {}
    return payload if isinstance(payload, dict) else {}


def _allowed_methods(path: str) -> Optional[str]:
    parts = path.strip("/").split("/")
    if parts == ["tasks"] and path.endswith("/"):
        return "GET, POST, PATCH, DELETE"
    if parts == ["tasks"]:
        return "GET, POST"
    if len(parts) == 2 and parts[0] == "tasks":
        return "PATCH, DELETE"
    return None


def create_app(service: Optional[TaskService] = None) -> FastAPI:
    """
    Build the task API around ``service``; a service wired from the
    environment and ``settings.json`` is used when none is given.
    """
    task_service = service or build_service()
    app = FastAPI()
    app.state.task_service = task_service

    @app.get("/tasks")
    @app.get("/tasks/", include_in_schema=False)
    async def list_tasks() -> JSONResponse:
        try:
            task_list = await run_in_threadpool(task_service.list_tasks)
        except Exception:
            logger.exception("Listing tasks failed")
            return _server_error()
        return JSONResponse({"taskList": task_list})

    @app.post("/tasks")
    @app.post("/tasks/", include_in_schema=False)
    async def create_task(request: Request) -> JSONResponse:
        payload = await _read_json(request)
        try:
            task = await run_in_threadpool(task_service.create_task, payload.get("title"))
        except ValidationError as exc:
            return _message(status.HTTP_400_BAD_REQUEST, str(exc))
        except Exception:
            logger.exception("Creating task failed")
            return _server_error()
        return JSONResponse({"task": task})

    @app.api_route("/tasks/", methods=["PATCH", "DELETE"])
    async def missing_task_id() -> JSONResponse:
        return _message(status.HTTP_400_BAD_REQUEST, "task id required")

    @app.patch("/tasks/{task_id}")
    async def update_task(task_id: str, request: Request) -> JSONResponse:
        payload = await _read_json(request)
        try:
            await run_in_threadpool(task_service.set_done, task_id, payload.get("isDone"))
        except ValidationError as exc:
            return _message(status.HTTP_400_BAD_REQUEST, str(exc))
        except Exception:
            logger.exception("Updating task %s failed", task_id)
            return _server_error()
        return _message(status.HTTP_200_OK, "task updated")

    @app.delete("/tasks/{task_id}")
    async def remove_task(task_id: str) -> JSONResponse:
        try:
            await run_in_threadpool(task_service.remove_task, task_id)
        except ValidationError as exc:
            return _message(status.HTTP_400_BAD_REQUEST, str(exc))
        except Exception:
            logger.exception("Removing task %s failed", task_id)
            return _server_error()
        return _message(status.HTTP_200_OK, "task removed")

    # Registered last so it only sees requests no route above accepted.
    @app.api_route("/{path:path}", methods=ALL_METHODS, include_in_schema=False)
    async def method_not_allowed(request: Request, path: str) -> JSONResponse:
        allow = _allowed_methods(path)
        return _message(
            status.HTTP_405_METHOD_NOT_ALLOWED,
            "method not allowed",
            headers={"Allow": allow} if allow else None,
        )

    return app


app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run(app, host=environment.host, port=environment.port)


# Convenience include for uvicorn.
__all__ = ["app", "create_app", "run"]
