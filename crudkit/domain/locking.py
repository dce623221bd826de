"""Lock specification value type."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from crudkit.core.errors import ConfigurationError
from crudkit.domain.enums import LockMode

VersionToken = int | datetime


@dataclass(frozen=True)
class LockSpec:
    """
    Requested row-locking behavior.

    An optimistic lock must carry a version token: either an integer
    counter or a datetime. The two are kept distinct; an int is never
    compared against a timestamp column or vice versa.

    Raises:
        ConfigurationError: On construction, if the mode/token pair is invalid
    """

    mode: LockMode = LockMode.NONE
    version: VersionToken | None = None

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "mode", LockMode(self.mode))
        except ValueError:
            raise ConfigurationError(
                f"Unknown lock mode '{self.mode}'",
                details={"allowed": [m.value for m in LockMode]},
            ) from None

        if self.mode == LockMode.OPTIMISTIC:
            if self.version is None:
                raise ConfigurationError("Lock version not specified for optimistic lock")
            if isinstance(self.version, bool) or not isinstance(self.version, (int, datetime)):
                raise ConfigurationError(
                    "Optimistic lock version must be an integer counter or a datetime",
                    details={"type": type(self.version).__name__},
                )
        elif self.version is not None:
            raise ConfigurationError(
                f"Lock version is only meaningful for optimistic locks, not '{self.mode.value}'",
                details={"mode": self.mode.value},
            )

    @property
    def is_pessimistic(self) -> bool:
        return self.mode in (LockMode.PESSIMISTIC_READ, LockMode.PESSIMISTIC_WRITE)

    @property
    def is_optimistic(self) -> bool:
        return self.mode == LockMode.OPTIMISTIC

    @property
    def uses_timestamp(self) -> bool:
        """True when the version token is a datetime rather than a counter."""
        return isinstance(self.version, datetime)

    @classmethod
    def optimistic(cls, version: VersionToken) -> LockSpec:
        return cls(LockMode.OPTIMISTIC, version)

    @classmethod
    def pessimistic_read(cls) -> LockSpec:
        return cls(LockMode.PESSIMISTIC_READ)

    @classmethod
    def pessimistic_write(cls) -> LockSpec:
        return cls(LockMode.PESSIMISTIC_WRITE)


NO_LOCK = LockSpec()


def as_lock_spec(
    lock: LockSpec | LockMode | str | None = None,
    *,
    lock_mode: LockMode | str | None = None,
    lock_version: VersionToken | None = None,
) -> LockSpec:
    """
    Accept either a ready LockSpec or the loose ``lock_mode``/``lock_version`` pair.

    Raises:
        ConfigurationError: If both forms are given or the result is invalid
    """
    if isinstance(lock, LockSpec):
        if lock_mode is not None or lock_version is not None:
            raise ConfigurationError("Pass either a LockSpec or lock_mode/lock_version, not both")
        return lock
    mode = lock if lock is not None else lock_mode
    if mode is None:
        if lock_version is not None:
            raise ConfigurationError("Lock version given without a lock mode")
        return NO_LOCK
    return LockSpec(mode, lock_version)
