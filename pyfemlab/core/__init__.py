from .topology import Node, Edge, Element, Cell, Intersection
from .mesh import Mesh
__all__ = ['Mesh', 'Node', 'Edge', 'Element', 'Cell', 'Intersection']
