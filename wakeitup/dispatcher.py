"""Resolves device commands and drives the network actuator."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Iterable, List, Optional, Sequence, Set

from .config import NetworkConfig
from .core.errors import (
    ActuationError,
    DirectoryUnavailable,
    FormatError,
    InvalidCommandError,
    NetworkCapabilityError,
    NetworkUnavailable,
)
from .core.models import (
    Action,
    ActionOutcome,
    AliasedDevice,
    AllDevices,
    CommandRequest,
    Device,
    DispatchResult,
    OutcomeStatus,
    SingleDevice,
    SkipReason,
)
from .core.protocols import Actuator, DeviceDirectory, OutcomeObserver
from .mac import parse_mac, reverse_for_sol

LOGGER = logging.getLogger(__name__)


class CommandDispatcher:
    """Turns a :class:`CommandRequest` into network actions.

    Per-device problems (disabled, SOL unsupported, malformed MAC, transmit
    failure) come back as :class:`ActionOutcome` values. Only failures of the
    directory or of the network layer as a whole raise ``DispatchError``.

    Wake requests for every device are fanned out in the background: the
    returned result is marked ``accepted`` immediately and each per-device
    outcome is delivered to the registered observers as it completes.
    """

    def __init__(
        self,
        directory: DeviceDirectory,
        actuator: Actuator,
        config: NetworkConfig,
        *,
        observers: Iterable[OutcomeObserver] = (),
    ) -> None:
        self._directory = directory
        self._actuator = actuator
        self._probe_timeout = config.probe_timeout_seconds
        self._sweep_limit = asyncio.Semaphore(max(1, config.sweep_concurrency))
        self._observers: List[OutcomeObserver] = list(observers)
        self._sweeps: Set[asyncio.Task[List[ActionOutcome]]] = set()

    def add_observer(self, observer: OutcomeObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: OutcomeObserver) -> None:
        with contextlib.suppress(ValueError):
            self._observers.remove(observer)

    @property
    def pending_sweeps(self) -> int:
        return len(self._sweeps)

    async def dispatch(
        self, request: CommandRequest, *, timeout: Optional[float] = None
    ) -> DispatchResult:
        """Dispatch ``request``.

        Args:
            request: The command to run.
            timeout: Probe timeout override for status commands.

        Raises:
            InvalidCommandError: For sleep or status aimed at every device.
            DirectoryUnavailable: If the directory cannot be read.
            NetworkUnavailable: If ICMP cannot be used at all.
        """

        selector = request.selector
        if isinstance(selector, AllDevices):
            if request.action is not Action.WAKE:
                raise InvalidCommandError(
                    f"{request.action.value} cannot target all devices"
                )
            devices = await self._call_directory(self._directory.list_all())
            return self._start_sweep(request, devices)

        if isinstance(selector, SingleDevice):
            device = await self._call_directory(
                self._directory.find_by_id(selector.device_id)
            )
            key = selector.device_id
        elif isinstance(selector, AliasedDevice):
            device = await self._call_directory(
                self._directory.find_by_alias(selector.alias)
            )
            key = selector.alias
        else:  # pragma: no cover - exhaustive over DeviceSelector
            raise InvalidCommandError(f"Unsupported selector: {selector!r}")

        if device is None:
            LOGGER.warning(
                "%s request from %s: no device matches %r",
                request.action.value,
                request.origin,
                key,
            )
            return DispatchResult(request=request, outcomes=(), success=False)

        outcome = await self._execute(request.action, device, timeout=timeout)
        self._log_outcome(request, outcome)
        return DispatchResult(request=request, outcomes=(outcome,), success=outcome.ok)

    async def aclose(self, *, timeout: float = 5.0) -> None:
        """Wait briefly for running sweeps, then cancel what is left."""

        if not self._sweeps:
            return
        pending = list(self._sweeps)
        _done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        for task in still_running:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # ------------------------------------------------------------------
    # Resolution and policy
    # ------------------------------------------------------------------
    async def _call_directory(self, awaitable):
        try:
            return await awaitable
        except DirectoryUnavailable:
            raise
        except Exception as exc:
            raise DirectoryUnavailable(f"Device directory unavailable: {exc}") from exc

    @staticmethod
    def _check_policy(action: Action, device: Device) -> Optional[SkipReason]:
        if device.disabled:
            return SkipReason.DISABLED
        if action is Action.SLEEP and not device.supports_sol:
            return SkipReason.SOL_UNSUPPORTED
        return None

    async def _execute(
        self, action: Action, device: Device, *, timeout: Optional[float] = None
    ) -> ActionOutcome:
        reason = self._check_policy(action, device)
        if reason is not None:
            return ActionOutcome.skipped(device, action, reason)

        if action is Action.STATUS:
            return await self._probe(device, timeout or self._probe_timeout)

        if not device.mac:
            return ActionOutcome.failed(device, action, "no MAC address configured")
        try:
            mac = parse_mac(device.mac)
        except FormatError as exc:
            return ActionOutcome.failed(device, action, exc)
        if action is Action.SLEEP:
            mac = reverse_for_sol(mac)

        try:
            await self._actuator.wake(mac)
        except ActuationError as exc:
            return ActionOutcome.failed(device, action, exc)
        return ActionOutcome.success(device, action)

    async def _probe(self, device: Device, timeout: float) -> ActionOutcome:
        if not device.ip:
            return ActionOutcome.failed(device, Action.STATUS, "no IP address configured")
        try:
            verdict = await self._actuator.probe(device.ip, timeout)
        except NetworkCapabilityError as exc:
            raise NetworkUnavailable(str(exc)) from exc
        return ActionOutcome.success(device, Action.STATUS, reachability=verdict)

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------
    def _start_sweep(
        self, request: CommandRequest, devices: Sequence[Device]
    ) -> DispatchResult:
        LOGGER.info(
            "%s sweep requested by %s over %d devices",
            request.action.label,
            request.origin,
            len(devices),
        )
        task = asyncio.create_task(self._sweep(request, list(devices)))
        self._sweeps.add(task)
        task.add_done_callback(self._sweeps.discard)
        return DispatchResult(
            request=request, success=True, accepted=True, completion=task
        )

    async def _sweep(
        self, request: CommandRequest, devices: List[Device]
    ) -> List[ActionOutcome]:
        async def _one(device: Device) -> ActionOutcome:
            if device.disabled:
                outcome = ActionOutcome.skipped(
                    device, request.action, SkipReason.DISABLED
                )
            else:
                async with self._sweep_limit:
                    try:
                        outcome = await self._execute(request.action, device)
                    except Exception as exc:
                        LOGGER.exception(
                            "Unexpected error while handling device %s",
                            device.device_id,
                        )
                        outcome = ActionOutcome.failed(device, request.action, exc)
            self._log_outcome(request, outcome)
            await self._notify(request, outcome)
            return outcome

        return list(await asyncio.gather(*(_one(device) for device in devices)))

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------
    async def _notify(self, request: CommandRequest, outcome: ActionOutcome) -> None:
        for observer in list(self._observers):
            try:
                result = observer(request, outcome)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception("Outcome observer raised an exception")

    @staticmethod
    def _log_outcome(request: CommandRequest, outcome: ActionOutcome) -> None:
        message = "[%s] %s (device %s)"
        args = (request.origin, outcome.describe(), outcome.device_id)
        if outcome.status is OutcomeStatus.SUCCESS:
            LOGGER.info(message, *args)
        elif outcome.status is OutcomeStatus.SKIPPED:
            LOGGER.warning(message, *args)
        else:
            LOGGER.error(message, *args)
