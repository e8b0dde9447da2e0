"""spinefem.solvers.timestepper
Backward-difference time integrators.

A time stepper owns a weight table ``weight(order, t)`` that turns the value
history stored in a :class:`~spinefem.core.topology.Data` (``t = 0`` is the
present, ``t > 0`` the past) into an approximation of the ``order``-th time
derivative::

    d^k u / dt^k  ~  sum_t weight(k, t) * u(t)

Steady steppers report ``is_steady`` and contribute nothing.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from spinefem.errors import ConfigurationError

if TYPE_CHECKING:
    from spinefem.core.topology import Data

logger = logging.getLogger(__name__)


@dataclass
class TimeStepperParameters:
    """Run parameters of a time-stepping loop."""

    dt: float = 0.005
    t_max: float = 0.8

    @property
    def n_steps(self) -> int:
        # guard against 0.03 / 0.01 = 2.999...
        return int(np.floor(self.t_max / self.dt + 1e-9))


class Time:
    """Continuous time plus the history of the last ``ndt`` step sizes."""

    def __init__(self, ndt: int = 1):
        if ndt < 1:
            raise ConfigurationError("Time needs at least one stored time step.")
        self.time = 0.0
        self._dt = np.zeros(ndt)

    @property
    def ndt(self) -> int:
        return self._dt.size

    def dt(self, t: int = 0) -> float:
        """Step size ``t`` steps ago (``dt(0)`` is the current step)."""
        return float(self._dt[t])

    def set_dt(self, dt: float) -> None:
        self._dt[0] = dt

    def initialise_dt(self, dt: float) -> None:
        """Fill the whole step-size history with ``dt``."""
        if dt <= 0.0:
            raise ConfigurationError(f"Time step must be positive, got {dt}.")
        self._dt[:] = dt

    def shift_dt(self) -> None:
        self._dt[1:] = self._dt[:-1]

    def snapshot(self) -> tuple[float, np.ndarray]:
        return self.time, self._dt.copy()

    def restore(self, snap: tuple[float, np.ndarray]) -> None:
        self.time, dts = snap
        self._dt[:] = dts

    def __repr__(self):
        return f"Time(t={self.time:.6g}, dt={self._dt.tolist()})"


class TimeStepper:
    """Base class: weight table over ``ntstorage`` history levels."""

    #: highest derivative order stored in the weight table
    max_order = 1

    def __init__(self, ntstorage: int, ndt: int, time: Time | None = None):
        self.ntstorage = ntstorage
        self.ndt = ndt
        self.time = time if time is not None else Time(max(ndt, 1))
        if self.time.ndt < ndt:
            raise ConfigurationError(
                f"{type(self).__name__} needs {ndt} stored time steps, "
                f"Time only keeps {self.time.ndt}."
            )
        self._weights = np.zeros((self.max_order + 1, ntstorage))
        self._weights[0, 0] = 1.0
        self._is_steady = False
        self._steady_backup = None

    # ------------------------------------------------------------------
    #  Weight table
    # ------------------------------------------------------------------
    @property
    def is_steady(self) -> bool:
        return self._is_steady

    def weight(self, order: int, t: int) -> float:
        if order > self.max_order:
            raise ConfigurationError(
                f"{type(self).__name__} provides derivatives up to order {self.max_order}."
            )
        return float(self._weights[order, t])

    def weights(self, order: int = 1) -> np.ndarray:
        """Row ``order`` of the weight table (read-only view)."""
        w = self._weights[order]
        w.flags.writeable = False
        return w

    def set_weights(self) -> None:
        raise NotImplementedError

    def make_steady(self) -> None:
        """Zero every derivative weight; the stepper then behaves as steady."""
        if self._is_steady:
            return
        self._steady_backup = self._weights.copy()
        self._weights[1:] = 0.0
        self._is_steady = True

    def undo_make_steady(self) -> None:
        if not self._is_steady or self._steady_backup is None:
            return
        self._weights[:] = self._steady_backup
        self._steady_backup = None
        self._is_steady = False

    # ------------------------------------------------------------------
    #  History management
    # ------------------------------------------------------------------
    def shift_time_values(self, data: "Data") -> None:
        """Rotate the history of ``data``: past(t) <- past(t-1)."""
        for t in range(self.ntstorage - 1, 0, -1):
            data.values[t] = data.values[t - 1]

    def shift_time_positions(self, node) -> None:
        for t in range(self.ntstorage - 1, 0, -1):
            node.positions[t] = node.positions[t - 1]

    def assign_initial_values_impulsive(self, data: "Data") -> None:
        """Every past value equals the present one (started from rest)."""
        data.values[1:] = data.values[0]

    def assign_initial_positions_impulsive(self, node) -> None:
        node.positions[1:] = node.positions[0]

    def __repr__(self):
        return f"{type(self).__name__}(ntstorage={self.ntstorage}, steady={self._is_steady})"


class Steady(TimeStepper):
    """Time stepper for steady problems; ``ntstorage`` only sizes storage."""

    def __init__(self, ntstorage: int = 1, time: Time | None = None):
        super().__init__(ntstorage=ntstorage, ndt=0, time=time)
        self._is_steady = True

    def set_weights(self) -> None:
        pass

    def undo_make_steady(self) -> None:
        logger.debug("Steady time stepper cannot be made unsteady; ignored.")


class BDF1(TimeStepper):
    """Backward Euler."""

    def __init__(self, time: Time | None = None):
        super().__init__(ntstorage=2, ndt=1, time=time)

    def set_weights(self) -> None:
        if self._is_steady:
            return
        dt = self.time.dt(0)
        self._weights[1, 0] = 1.0 / dt
        self._weights[1, 1] = -1.0 / dt


class BDF2(TimeStepper):
    """Second-order backward difference with variable step size."""

    def __init__(self, time: Time | None = None):
        super().__init__(ntstorage=3, ndt=2, time=time)

    def set_weights(self) -> None:
        if self._is_steady:
            return
        dt = self.time.dt(0)
        dtprev = self.time.dt(1)
        self._weights[1, 0] = 1.0 / dt + 1.0 / (dt + dtprev)
        self._weights[1, 1] = -(dt + dtprev) / (dt * dtprev)
        self._weights[1, 2] = dt / ((dt + dtprev) * dtprev)


def get_time_stepper(name: str, time: Time | None = None) -> TimeStepper:
    """Factory keyed by the usual short names ("steady", "bdf1", "bdf2")."""
    key = name.lower()
    if key == "steady":
        return Steady(time=time)
    if key in {"bdf1", "backward_euler"}:
        return BDF1(time=time)
    if key == "bdf2":
        return BDF2(time=time)
    raise ConfigurationError(f"Unknown time stepper '{name}'.")
