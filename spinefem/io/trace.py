"""spinefem.io.trace
Plain-text output: a per-step trace file and per-step solution dumps.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple, Union

import numpy as np

logger = logging.getLogger(__name__)

ContactAngleFct = Callable[[object], Tuple[float, float]]

TRACE_HEADER = "time, edge spine height, contact angle left, contact angle right"


def no_contact_angles(mesh) -> Tuple[float, float]:
    """Contact-angle diagnostic that reports (0, 0)."""
    return 0.0, 0.0


class TraceWriter:
    """Writes one row per documented step: time, edge spine height and the
    contact angles (in degrees) returned by a pluggable diagnostic."""

    def __init__(self, path: Union[str, Path, None] = None,
                 contact_angles: Optional[ContactAngleFct] = None):
        self.path = Path(path) if path is not None else None
        self.contact_angles = contact_angles if contact_angles is not None else no_contact_angles
        self.rows: List[Tuple[float, float, float, float]] = []
        self._fh = None
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path, "w", encoding="utf-8")
            self._fh.write(TRACE_HEADER + "\n")

    def write(self, time: float, mesh) -> Tuple[float, float, float, float]:
        left, right = self.contact_angles(mesh)
        row = (float(time), float(mesh.spine(0).height), float(left), float(right))
        self.rows.append(row)
        if self._fh is not None:
            self._fh.write(" ".join(f"{v:.10g}" for v in row) + "\n")
            self._fh.flush()
        return row

    def as_array(self) -> np.ndarray:
        return np.array(self.rows, dtype=float).reshape(-1, 4)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def write_solution(path: Union[str, Path], mesh, n_plot: int = 5) -> int:
    """Dump ``output_values`` of every bulk element; returns the number of rows."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    n_rows = 0
    with open(path, "w", encoding="utf-8") as fh:
        for el in mesh.elements_list:
            output = getattr(el.physics, "output_values", None)
            if output is None or el.geometry.element_type != "quad":
                continue
            block = output(el, n_plot)
            np.savetxt(fh, block, fmt="%.10g")
            n_rows += block.shape[0]
    logger.debug(f"write_solution: {n_rows} rows to {path}")
    return n_rows
