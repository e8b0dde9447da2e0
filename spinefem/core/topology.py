"""spinefem.core.topology
Degree-of-freedom carriers: ``Data`` (values with history), ``Node``
(Data with a position history), ``SpineNode`` and ``Spine``.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from spinefem.errors import FieldIndexError

if TYPE_CHECKING:
    from spinefem.solvers.timestepper import TimeStepper
    from spinefem.core.mesh import SpineMesh

#: equation number of a pinned value
PINNED = -1
#: equation number of a free value before ``assign_eqn_numbers``
UNNUMBERED = -2


class Data:
    """``n_value`` values, each with ``time_stepper.ntstorage`` history levels.

    ``values[t, i]`` is value ``i`` at history level ``t`` (``t = 0`` is the
    present). Each value is either pinned or carries a global equation number.
    """

    def __init__(self, n_value: int, time_stepper: "TimeStepper", initial_value: float = 0.0):
        self.time_stepper = time_stepper
        self.values = np.full((time_stepper.ntstorage, n_value), initial_value, dtype=float)
        self.eqn_numbers = np.full(n_value, UNNUMBERED, dtype=np.int64)

    @property
    def n_value(self) -> int:
        return self.values.shape[1]

    @property
    def ntstorage(self) -> int:
        return self.values.shape[0]

    def _check(self, i: int) -> None:
        if not 0 <= i < self.n_value:
            raise FieldIndexError(i, self.n_value, type(self).__name__)

    # --- values -------------------------------------------------------
    def value(self, i: int, t: int = 0) -> float:
        self._check(i)
        return float(self.values[t, i])

    def set_value(self, i: int, val: float, t: int = 0) -> None:
        self._check(i)
        self.values[t, i] = val

    def history(self, i: int) -> np.ndarray:
        """Present and past values of value ``i``."""
        self._check(i)
        return self.values[:, i]

    def time_derivative(self, i: int, order: int = 1) -> float:
        """``sum_t weight(order, t) * value(t)``; zero for a steady stepper."""
        self._check(i)
        ts = self.time_stepper
        if ts.is_steady:
            return 0.0
        return float(ts.weights(order)[: self.ntstorage] @ self.values[:, i])

    # --- pinning / numbering -----------------------------------------
    def pin(self, i: int) -> None:
        self._check(i)
        self.eqn_numbers[i] = PINNED

    def unpin(self, i: int) -> None:
        self._check(i)
        if self.eqn_numbers[i] == PINNED:
            self.eqn_numbers[i] = UNNUMBERED

    def pin_all(self) -> None:
        self.eqn_numbers[:] = PINNED

    def is_pinned(self, i: int) -> bool:
        self._check(i)
        return bool(self.eqn_numbers[i] == PINNED)

    def eqn_number(self, i: int) -> int:
        self._check(i)
        return int(self.eqn_numbers[i])

    @property
    def n_free(self) -> int:
        return int(np.count_nonzero(self.eqn_numbers != PINNED))

    # --- time history -------------------------------------------------
    def shift_time_values(self) -> None:
        self.time_stepper.shift_time_values(self)

    def assign_initial_values_impulsive(self) -> None:
        self.time_stepper.assign_initial_values_impulsive(self)

    def __repr__(self):
        return f"{type(self).__name__}(n_value={self.n_value}, values={self.values[0].tolist()})"


class Node(Data):
    """Data attached to a point whose coordinates carry a history too."""

    def __init__(
        self,
        id: int,
        x: Sequence[float],
        n_value: int,
        time_stepper: "TimeStepper",
        tag: str = "",
    ):
        super().__init__(n_value, time_stepper)
        self.id = id
        self.tag = tag
        x = np.asarray(x, dtype=float)
        self.positions = np.tile(x, (time_stepper.ntstorage, 1))
        self.boundaries: set[int] = set()

    @property
    def dim(self) -> int:
        return self.positions.shape[1]

    @property
    def x(self) -> np.ndarray:
        """Present position (a view; writes move the node)."""
        return self.positions[0]

    def position(self, i: int, t: int = 0) -> float:
        return float(self.positions[t, i])

    def dposition_dt(self) -> np.ndarray:
        """Node velocity ``sum_t weight(1, t) * x(t)`` (zero if steady)."""
        ts = self.time_stepper
        if ts.is_steady:
            return np.zeros(self.dim)
        return ts.weights(1)[: self.ntstorage] @ self.positions

    def is_on_boundary(self, b: Optional[int] = None) -> bool:
        if b is None:
            return bool(self.boundaries)
        return b in self.boundaries

    def node_update(self, update_all_time_levels: bool = False) -> None:
        """Fixed nodes have nothing to re-derive."""

    def shift_time_values(self) -> None:
        super().shift_time_values()
        self.time_stepper.shift_time_positions(self)

    def assign_initial_values_impulsive(self) -> None:
        super().assign_initial_values_impulsive()
        self.time_stepper.assign_initial_positions_impulsive(self)

    def __repr__(self):
        return f"{type(self).__name__} {self.id}({', '.join(f'{c:.3f}' for c in self.x)}, tag='{self.tag}')"


class Spine(Data):
    """A geometric unknown: the height along a fixed generator line.

    ``base`` is the foot of the line, ``direction`` its unit direction; the
    height is value 0 of the Data.
    """

    def __init__(self, id: int, base: Sequence[float], height: float,
                 time_stepper: "TimeStepper", direction: Sequence[float] = (0.0, 1.0)):
        super().__init__(1, time_stepper, initial_value=height)
        self.id = id
        self.base = np.asarray(base, dtype=float)
        direction = np.asarray(direction, dtype=float)
        self.direction = direction / np.linalg.norm(direction)
        self.nodes: list[SpineNode] = []

    @property
    def height(self) -> float:
        return float(self.values[0, 0])

    @height.setter
    def height(self, h: float) -> None:
        self.values[0, 0] = h

    def __repr__(self):
        return f"Spine {self.id}(base={self.base.tolist()}, h={self.height:.6g})"


class SpineNode(Node):
    """Node whose position is a function of a spine height.

    The position formula belongs to the owning mesh (``spine_node_update``);
    ``layer`` selects which formula applies.
    """

    def __init__(self, id, x, n_value, time_stepper, spine: Spine, fraction: float,
                 layer: int = 0, mesh: Optional["SpineMesh"] = None, tag: str = ""):
        super().__init__(id, x, n_value, time_stepper, tag=tag)
        self.spine = spine
        self.fraction = float(fraction)
        self.layer = layer
        self.mesh = mesh
        spine.nodes.append(self)

    def node_update(self, update_all_time_levels: bool = False) -> None:
        levels = range(self.ntstorage) if update_all_time_levels else (0,)
        for t in levels:
            self.positions[t] = self.mesh.spine_node_update(self, t)
