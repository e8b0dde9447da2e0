import copy
import pickle

import numpy as np
import pytest

from spinefem.core.topology import PINNED, UNNUMBERED, Data, Node, Spine, SpineNode
from spinefem.core.mesh import SpineMesh
from spinefem.errors import FieldIndexError, NonCopyableError
from spinefem.fem.advection_diffusion import AdvectionDiffusion
from spinefem.fem.element import Element, q_geometry
from spinefem.solvers.timestepper import BDF1, Steady


def test_data_values_and_pins():
    d = Data(3, Steady())
    d.set_value(2, 1.5)
    assert d.value(2) == 1.5
    assert np.all(d.eqn_numbers == UNNUMBERED)
    d.pin(1)
    assert d.is_pinned(1) and d.eqn_number(1) == PINNED
    assert d.n_free == 2
    d.unpin(1)
    assert d.eqn_number(1) == UNNUMBERED


def test_out_of_range_field_index_fails_loudly():
    d = Data(2, Steady())
    for call in (lambda: d.value(2), lambda: d.set_value(5, 1.0),
                 lambda: d.pin(-1), lambda: d.time_derivative(2)):
        with pytest.raises(FieldIndexError):
            call()
    # still an IndexError for generic callers
    with pytest.raises(IndexError):
        d.history(3)


def test_node_velocity_from_position_history():
    ts = BDF1()
    ts.time.initialise_dt(0.5)
    ts.set_weights()
    node = Node(0, (1.0, 2.0), 1, ts)
    node.positions[1] = (1.0, 1.0)
    assert np.allclose(node.dposition_dt(), [0.0, 2.0])


def test_spine_node_follows_spine():
    ts = Steady()
    mesh = SpineMesh()
    spine = Spine(0, (0.25, 0.0), 2.0, ts)
    mesh.spines.append(spine)
    node = SpineNode(0, spine.base, 1, ts, spine, 0.5, mesh=mesh)
    mesh.add_node(node)
    mesh.update_nodes()
    assert np.allclose(node.x, [0.25, 1.0])
    spine.height = 3.0
    mesh.update_nodes()
    assert np.allclose(node.x, [0.25, 1.5])
    assert spine.nodes == [node]


def test_element_is_not_copyable():
    ts = Steady()
    nodes = [Node(k, (k % 3 * 0.5, k // 3 * 0.5), 1, ts) for k in range(9)]
    el = Element(q_geometry(2), AdvectionDiffusion(), nodes)
    with pytest.raises(NonCopyableError):
        copy.copy(el)
    with pytest.raises(NonCopyableError):
        copy.deepcopy(el)
    with pytest.raises(TypeError):
        pickle.dumps(el)
