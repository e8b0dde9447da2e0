from .topology import Data, Node, Spine, SpineNode, PINNED, UNNUMBERED
from .mesh import Mesh, SpineMesh
from .dofhandler import DofHandler
__all__ = ['Data', 'Node', 'Spine', 'SpineNode', 'PINNED', 'UNNUMBERED',
           'Mesh', 'SpineMesh', 'DofHandler']
