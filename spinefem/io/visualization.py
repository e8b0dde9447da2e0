"""spinefem.io.visualization"""
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.collections import LineCollection, PolyCollection

_ELEM_FILL = {
    "lower": (0.4, 0.6, 1.0, 0.5),
    "upper": (1.0, 0.8, 0.4, 0.5),
    "default": (0.9, 0.9, 0.9, 0.5),
}
_EDGE_COLOR = {
    "interface": "green",
    "default": "black",
}


def _elem_fill(tag):
    return _ELEM_FILL.get(tag, _ELEM_FILL["default"])


def _corner_polygon(el):
    """Corners of a Qn element in counter-clockwise order."""
    p = el.geometry.poly_order
    n1 = p + 1
    corners = [0, p, n1 * n1 - 1, p * n1]
    return el.nodal_positions()[corners]


def plot_mesh(mesh, *, plot_nodes=False, show=True, ax=None):
    """Plot bulk elements (filled by tag) and line elements (by tag colour)."""
    if ax is None:
        _, ax = plt.subplots(figsize=(6, 6))
    polys, fills, lines, colors = [], [], [], []
    for el in mesh.elements_list:
        if el.geometry.element_type == "quad":
            polys.append(_corner_polygon(el))
            fills.append(_elem_fill(el.tag))
        else:
            # trace the line through all its nodes
            lines.append(el.nodal_positions())
            colors.append(_EDGE_COLOR.get(el.tag, _EDGE_COLOR["default"]))
    ax.add_collection(PolyCollection(polys, facecolors=fills, edgecolors="black", linewidths=0.5))
    if lines:
        ax.add_collection(LineCollection(lines, colors=colors, linewidths=2.0))
    if plot_nodes:
        xy = mesh.node_coordinates()
        ax.plot(xy[:, 0], xy[:, 1], "k.", markersize=2)
    ax.autoscale_view()
    ax.set_aspect("equal")
    if show:
        plt.show()
    return ax


def plot_trace(trace, *, show=True, ax=None):
    """Edge spine height against time from a ``TraceWriter`` or its array."""
    data = trace.as_array() if hasattr(trace, "as_array") else np.asarray(trace)
    if ax is None:
        _, ax = plt.subplots()
    ax.plot(data[:, 0], data[:, 1], "-o", markersize=3)
    ax.set_xlabel("time")
    ax.set_ylabel("edge spine height")
    if show:
        plt.show()
    return ax
