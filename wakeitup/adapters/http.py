"""HTTP command surface built on aiohttp."""

from __future__ import annotations

import contextlib
import logging
import secrets
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from aiohttp import web

from .. import constants
from ..config import ServerConfig
from ..core.errors import (
    DeviceNotFoundError,
    DirectoryError,
    DirectoryUnavailable,
    DispatchError,
    FormatError,
)
from ..core.models import (
    ALL_DEVICES,
    Action,
    CommandRequest,
    DispatchResult,
    OutcomeStatus,
    SingleDevice,
    SkipReason,
)
from ..directory import InMemoryDeviceDirectory
from ..dispatcher import CommandDispatcher
from ..health import ServiceHealth

LOGGER = logging.getLogger(__name__)

ORIGIN = "http"
MAX_PROBE_TIMEOUT_SECONDS = 10.0

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _text(body: str, status: int = 200) -> web.Response:
    return web.Response(text=body, status=status)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"true", "1", "yes", "on"}


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip()


def _bearer_token(request: web.Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _matches(token: Optional[str], expected: Optional[str]) -> bool:
    if not token or not expected:
        return False
    return secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


class ApiServer:
    """Serves the command routes, the device admin routes and ``/healthz``."""

    def __init__(
        self,
        config: ServerConfig,
        dispatcher: CommandDispatcher,
        directory: InMemoryDeviceDirectory,
        health: ServiceHealth,
    ) -> None:
        self._config = config
        self._dispatcher = dispatcher
        self._directory = directory
        self._health = health
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[self._auth_middleware])
        app.router.add_get("/healthz", self._handle_health)
        app.router.add_get("/api/devices", self._handle_list_devices)
        app.router.add_get("/api/status/{device_id}", self._handle_status)
        app.router.add_post("/api/status/{device_id}", self._handle_status)
        app.router.add_post("/api/wol/{device_id}", self._handle_wol)
        app.router.add_post("/api/sol/{device_id}", self._handle_sol)
        app.router.add_get("/api/admin/devices", self._handle_list_devices)
        app.router.add_post("/api/admin/devices", self._handle_add_device)
        app.router.add_put("/api/admin/devices/{device_id}", self._handle_edit_device)
        app.router.add_delete(
            "/api/admin/devices/{device_id}", self._handle_delete_device
        )
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await self._site.start()
        LOGGER.info(
            "HTTP API listening on http://%s:%s", self._config.host, self._config.port
        )

    async def stop(self) -> None:
        with contextlib.suppress(Exception):
            if self._site is not None:
                await self._site.stop()
        if self._runner is not None:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------
    @web.middleware
    async def _auth_middleware(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        path = request.path
        if not path.startswith("/api/"):
            return await handler(request)

        token = _bearer_token(request)
        is_admin = _matches(token, self._config.admin_token)

        if path.startswith("/api/admin/"):
            if not is_admin:
                return _text("Forbidden", 403)
            return await handler(request)

        if self._config.api_token and not (
            is_admin or _matches(token, self._config.api_token)
        ):
            return _text("Unauthorized", 401)
        return await handler(request)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def _dispatch(
        self, request: CommandRequest, *, timeout: Optional[float] = None
    ) -> Optional[DispatchResult]:
        try:
            return await self._dispatcher.dispatch(request, timeout=timeout)
        except DispatchError as exc:
            LOGGER.error("%s request failed: %s", request.action.value, exc)
            return None

    async def _handle_status(self, request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        timeout: Optional[float] = None
        raw_timeout = request.query.get("timeout")
        if raw_timeout:
            try:
                timeout = float(raw_timeout)
            except ValueError:
                return _text("Invalid timeout", 400)
            if not 0 < timeout <= MAX_PROBE_TIMEOUT_SECONDS:
                return _text("Invalid timeout", 400)

        result = await self._dispatch(
            CommandRequest(SingleDevice(device_id), Action.STATUS, origin=ORIGIN),
            timeout=timeout,
        )
        if result is None:
            return _text("Internal server error", 500)
        if result.not_found:
            return _text(SkipReason.NOT_FOUND.message, 404)
        outcome = result.outcome
        if (
            outcome is None
            or outcome.status is OutcomeStatus.FAILED
            or outcome.reachability is None
        ):
            return _text("Internal server error", 500)
        return _text(outcome.reachability.value)

    async def _handle_wol(self, request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        if device_id == constants.ALL_DEVICES_KEY:
            selector = ALL_DEVICES
        else:
            selector = SingleDevice(device_id)
        result = await self._dispatch(
            CommandRequest(selector, Action.WAKE, origin=ORIGIN)
        )
        return self._command_response(result)

    async def _handle_sol(self, request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        result = await self._dispatch(
            CommandRequest(SingleDevice(device_id), Action.SLEEP, origin=ORIGIN)
        )
        return self._command_response(result)

    @staticmethod
    def _command_response(result: Optional[DispatchResult]) -> web.Response:
        if result is None:
            return _text("Internal server error", 500)
        if result.accepted:
            return _text(result.describe())
        if result.not_found:
            return _text(SkipReason.NOT_FOUND.message, 404)
        outcome = result.outcome
        if outcome is not None and outcome.skip_reason is SkipReason.SOL_UNSUPPORTED:
            return _text(outcome.describe(), 400)
        if outcome is None or outcome.status is OutcomeStatus.FAILED:
            return _text("Internal server error", 500)
        return _text(outcome.describe())

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------
    async def _handle_list_devices(self, request: web.Request) -> web.Response:
        devices = await self._directory.list_all()
        return web.json_response(
            {
                "devices": [device.as_dict() for device in devices],
                "pingInterval": self._config.ping_interval_ms,
            }
        )

    async def _read_fields(self, request: web.Request) -> Mapping[str, Any]:
        if request.content_type == "application/json":
            try:
                body = await request.json()
            except ValueError:
                raise web.HTTPBadRequest(text="Invalid JSON body") from None
            if not isinstance(body, dict):
                raise web.HTTPBadRequest(text="Expected a JSON object")
            return body
        return await request.post()

    @staticmethod
    def _device_changes(fields: Mapping[str, Any]) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        if "name" in fields:
            changes["name"] = _as_text(fields["name"]) or ""
        if "mac" in fields:
            changes["mac"] = _as_text(fields["mac"])
        if "ip" in fields:
            changes["ip"] = _as_text(fields["ip"])
        if "supportsSOL" in fields:
            changes["supports_sol"] = _as_bool(fields["supportsSOL"])
        if "disabled" in fields:
            changes["disabled"] = _as_bool(fields["disabled"])
        if "mqtt" in fields:
            changes["mqtt_alias"] = _as_text(fields["mqtt"])
        return changes

    async def _handle_add_device(self, request: web.Request) -> web.Response:
        changes = self._device_changes(await self._read_fields(request))
        name = changes.pop("name", "")
        if not name:
            return _text("Device name is required", 400)
        try:
            device = self._directory.add(name, **changes)
        except (FormatError, DirectoryError) as exc:
            return _text(str(exc), 400)
        except DirectoryUnavailable as exc:
            return self._save_failed(exc)
        return web.json_response(device.as_dict(), status=201)

    async def _handle_edit_device(self, request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        changes = self._device_changes(await self._read_fields(request))
        if "name" in changes and not changes["name"]:
            return _text("Device name is required", 400)
        try:
            device = self._directory.update(device_id, **changes)
        except DeviceNotFoundError:
            return _text(SkipReason.NOT_FOUND.message, 404)
        except (FormatError, DirectoryError) as exc:
            return _text(str(exc), 400)
        except DirectoryUnavailable as exc:
            return self._save_failed(exc)
        return web.json_response(device.as_dict())

    async def _handle_delete_device(self, request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        try:
            self._directory.remove(device_id)
        except DeviceNotFoundError:
            return _text(SkipReason.NOT_FOUND.message, 404)
        except DirectoryUnavailable as exc:
            return self._save_failed(exc)
        return web.Response(status=204)

    @staticmethod
    def _save_failed(exc: DirectoryUnavailable) -> web.Response:
        LOGGER.error("Device change not saved: %s", exc)
        return _text("Internal server error", 500)

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._health.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)
