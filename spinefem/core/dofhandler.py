"""spinefem.core.dofhandler
Global equation numbering.

Every free value of every node, element-internal Data and spine receives a
unique, contiguous, 0-based equation number. Pinned values keep ``PINNED``
and never appear in the global system.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Tuple

import numpy as np

from spinefem.core.topology import PINNED, UNNUMBERED, Data
from spinefem.errors import ConfigurationError

if TYPE_CHECKING:
    from spinefem.core.mesh import Mesh

logger = logging.getLogger(__name__)


class DofHandler:
    """Assigns and checks equation numbers; maps dof vectors to Data values."""

    def __init__(self, mesh: "Mesh"):
        self.mesh = mesh
        self._dof_lookup: List[Tuple[Data, int]] = []
        self._data: List[Data] = []

    @property
    def n_dof(self) -> int:
        return len(self._dof_lookup)

    # ------------------------------------------------------------------
    #  Numbering
    # ------------------------------------------------------------------
    def assign_eqn_numbers(self) -> int:
        """Number nodes, then element-internal data, then spines."""
        lookup: List[Tuple[Data, int]] = []
        data_list: List[Data] = []
        seen: set[int] = set()
        for data in self.mesh.all_data():
            if id(data) in seen:
                continue
            seen.add(id(data))
            data_list.append(data)
            for i in range(data.n_value):
                if data.eqn_numbers[i] == PINNED:
                    continue
                data.eqn_numbers[i] = len(lookup)
                lookup.append((data, i))
        self._dof_lookup = lookup
        self._data = data_list
        for el in self.mesh.elements_list:
            el.assign_local_eqn_numbers()
        logger.info(f"Number of equations: {self.n_dof}")
        return self.n_dof

    def validate_eqn_numbers(self) -> None:
        """Check the numbering is still contiguous and matches the pins.

        Raises ConfigurationError if values were pinned/unpinned (or data
        added) since ``assign_eqn_numbers``; numbers are never re-assigned
        here.
        """
        n = self.n_dof
        hits = np.zeros(n, dtype=np.int64)
        for data in self._data:
            eqns = data.eqn_numbers
            if np.any(eqns == UNNUMBERED):
                raise ConfigurationError(
                    f"{data!r} has unnumbered free values; call assign_eqn_numbers()."
                )
            free = eqns[eqns != PINNED]
            if free.size and (free.min() < 0 or free.max() >= n):
                raise ConfigurationError(f"{data!r} has equation numbers outside [0, {n}).")
            np.add.at(hits, free, 1)
        if not np.all(hits == 1):
            missing = int(np.count_nonzero(hits == 0))
            dup = int(np.count_nonzero(hits > 1))
            raise ConfigurationError(
                f"Equation numbering is stale: {missing} missing, {dup} duplicated; "
                "call assign_eqn_numbers()."
            )
        for k, (data, i) in enumerate(self._dof_lookup):
            if data.eqn_numbers[i] != k:
                raise ConfigurationError("Equation numbering is stale; call assign_eqn_numbers().")

    # ------------------------------------------------------------------
    #  Dof vector <-> Data values
    # ------------------------------------------------------------------
    def get_dofs(self, t: int = 0) -> np.ndarray:
        dofs = np.empty(self.n_dof)
        for k, (data, i) in enumerate(self._dof_lookup):
            dofs[k] = data.values[t, i]
        return dofs

    def set_dofs(self, dofs: np.ndarray, t: int = 0) -> None:
        if dofs.shape != (self.n_dof,):
            raise ConfigurationError(f"Expected {self.n_dof} dofs, got shape {dofs.shape}.")
        for k, (data, i) in enumerate(self._dof_lookup):
            data.values[t, i] = dofs[k]

    def add_to_dofs(self, ddofs: np.ndarray, scale: float = 1.0) -> None:
        for k, (data, i) in enumerate(self._dof_lookup):
            data.values[0, i] += scale * ddofs[k]

    def dof_owner(self, k: int) -> Tuple[Data, int]:
        return self._dof_lookup[k]
