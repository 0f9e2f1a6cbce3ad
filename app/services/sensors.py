from __future__ import annotations

import asyncio
import itertools
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Set, Tuple

from loguru import logger

from app.core.tracking_config import (
    ONE_SHOT_HIGH_ACCURACY,
    ONE_SHOT_MAXIMUM_AGE_SECONDS,
    ONE_SHOT_TIMEOUT_SECONDS,
    WATCH_HIGH_ACCURACY,
    WATCH_MAXIMUM_AGE_SECONDS,
    WATCH_TIMEOUT_SECONDS,
)
from app.schemas.enums import LocationPermission
from app.schemas.geo import GeoPoint


# ------------------------------------------------------------------
# Errors (codes follow the W3C GeolocationPositionError)
# ------------------------------------------------------------------

class SensorError(Exception):
    code = 0
    default_message = "Location error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)


class PermissionDenied(SensorError):
    code = 1
    default_message = "Location permission denied"


class PositionUnavailable(SensorError):
    code = 2
    default_message = "Location unavailable"


class PositionTimeout(SensorError):
    code = 3
    default_message = "Timed out waiting for a location fix"


_ERRORS_BY_CODE = {cls.code: cls for cls in (PermissionDenied, PositionUnavailable, PositionTimeout)}


def sensor_error_from_code(code: int, message: str = "") -> SensorError:
    return _ERRORS_BY_CODE.get(code, PositionUnavailable)(message or None)


# ------------------------------------------------------------------
# Options
# ------------------------------------------------------------------

@dataclass(frozen=True)
class PositionOptions:
    high_accuracy: bool = True
    timeout: float = WATCH_TIMEOUT_SECONDS
    # 0 never accepts a cached fix
    maximum_age: float = 0


WATCH_OPTIONS = PositionOptions(
    high_accuracy=WATCH_HIGH_ACCURACY,
    timeout=WATCH_TIMEOUT_SECONDS,
    maximum_age=WATCH_MAXIMUM_AGE_SECONDS,
)

ONE_SHOT_OPTIONS = PositionOptions(
    high_accuracy=ONE_SHOT_HIGH_ACCURACY,
    timeout=ONE_SHOT_TIMEOUT_SECONDS,
    maximum_age=ONE_SHOT_MAXIMUM_AGE_SECONDS,
)

OnUpdate = Callable[[GeoPoint], None]
OnError = Callable[[SensorError], None]


# ------------------------------------------------------------------
# Sources
# ------------------------------------------------------------------

class PositionSource(ABC):
    @abstractmethod
    def watch_position(
        self,
        on_update: OnUpdate,
        on_error: OnError,
        options: PositionOptions = WATCH_OPTIONS,
    ) -> int:
        """Start continuous updates. Raises SensorError when the watch cannot start."""

    @abstractmethod
    def clear_watch(self, handle: int) -> None:
        """Stop a watch. Unknown handles are ignored."""

    @abstractmethod
    async def get_position(self, options: PositionOptions = ONE_SHOT_OPTIONS) -> GeoPoint:
        """One-shot fix. Raises SensorError."""


class DevicePositionSource(PositionSource):
    """
    Position source backed by a remote device.

    The device pushes fixes and errors through the API; watchers and
    one-shot requests on the server side consume them.
    """

    def __init__(
        self,
        permission: LocationPermission = LocationPermission.granted,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.permission = permission
        self._clock = clock
        self._handles = itertools.count(1)
        self._watchers: Dict[int, Tuple[OnUpdate, OnError]] = {}
        self._waiters: Set[asyncio.Future] = set()
        self._last_fix: Optional[Tuple[GeoPoint, float]] = None

    @property
    def last_fix(self) -> Optional[GeoPoint]:
        return self._last_fix[0] if self._last_fix else None

    @property
    def watch_count(self) -> int:
        return len(self._watchers)

    def _check_permission(self) -> None:
        if self.permission is LocationPermission.denied:
            raise PermissionDenied()
        if self.permission is LocationPermission.unsupported:
            raise PositionUnavailable("Geolocation is not supported by this device")

    def watch_position(
        self,
        on_update: OnUpdate,
        on_error: OnError,
        options: PositionOptions = WATCH_OPTIONS,
    ) -> int:
        self._check_permission()
        handle = next(self._handles)
        self._watchers[handle] = (on_update, on_error)
        return handle

    def clear_watch(self, handle: int) -> None:
        self._watchers.pop(handle, None)

    async def get_position(self, options: PositionOptions = ONE_SHOT_OPTIONS) -> GeoPoint:
        self._check_permission()

        if self._last_fix and options.maximum_age > 0:
            point, taken_at = self._last_fix
            if self._clock() - taken_at <= options.maximum_age:
                return point

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout=options.timeout)
        except asyncio.TimeoutError:
            raise PositionTimeout() from None
        finally:
            self._waiters.discard(waiter)

    def push(self, point: GeoPoint) -> None:
        self._last_fix = (point, self._clock())

        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(point)

        for on_update, _ in list(self._watchers.values()):
            on_update(point)

    def fail(self, error: SensorError) -> None:
        logger.debug(f"[sensor] device reported code={error.code} message={error}")

        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_exception(error)

        for _, on_error in list(self._watchers.values()):
            on_error(error)
