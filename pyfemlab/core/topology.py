import numpy as np
from dataclasses import dataclass, field
from typing import Tuple, Dict, Optional


class Node:
    def __init__(self, id, x, y, tag=None):
        self.x = x
        self.y = y
        self.id = id
        self.tag = tag

    def __repr__(self):
        return f"Node {self.id}({self.x:.3f}, {self.y:.3f}, tag='{self.tag}')"

    def __eq__(self, other):
        if not isinstance(other, Node):
            return NotImplemented
        return np.isclose(self.x, other.x) and np.isclose(self.y, other.y)

    def __hash__(self):
        return hash((self.x, self.y))

    def __getitem__(self, idx):
        if   idx == 0: return self.x
        elif idx == 1: return self.y
        raise IndexError("Node supports indices 0 (x) and 1 (y)")

    def __iter__(self):
        yield self.x
        yield self.y


@dataclass(slots=True)
class Edge:
    gid: int
    nodes: Tuple[int, int]      # Global node indices, oriented CCW w.r.t. the left element
    left: int                   # Element owning the edge as one of its sides
    right: Optional[int]        # Conforming neighbour across the edge, None on boundary / hanging side
    normal: np.ndarray          # Unit normal, pointing outward from the left element
    tag: str = ""
    lid: Optional[int] = None   # Local edge index within the left element
    boundary: bool = False
    length: float = 0.0


@dataclass(slots=True)
class Element:
    id: int                                 # Leaf index (renumbered on adaptation)
    nodes: Tuple[int, ...]                  # Corner node ids in CCW order
    element_type: str = "quad"
    tag: str = ""
    edges: Tuple[int, ...] = field(default_factory=tuple)
    neighbors: Dict[int, Optional[int]] = field(default_factory=dict)
    level: int = 0
    cell: int = -1                          # Id of the hierarchical cell backing this leaf
    centroid_x: float = 0.0
    centroid_y: float = 0.0

    @property
    def corner_nodes(self) -> Tuple[int, ...]:
        return self.nodes


@dataclass(slots=True)
class Cell:
    """A node of the refinement forest; leaves are the active elements."""
    id: int
    corners: Tuple[int, ...]
    level: int = 0
    parent: Optional[int] = None
    children: Tuple[int, ...] = ()

    @property
    def is_leaf(self) -> bool:
        return not self.children


@dataclass(slots=True)
class Intersection:
    """A side of a leaf element, as seen from that element."""
    element: int
    local_index: int                 # Local edge index within ``element``
    nodes: Tuple[int, int]
    A: np.ndarray                    # Start point (local corner ``local_index``)
    B: np.ndarray                    # End point (next corner, CCW)
    normal: np.ndarray               # Unit outward normal
    boundary: bool
    outside: Optional[int] = None    # Conforming neighbour, if any
    tag: str = ""

    @property
    def length(self) -> float:
        return float(np.linalg.norm(self.B - self.A))

    @property
    def center(self) -> np.ndarray:
        return 0.5 * (self.A + self.B)

    def global_coords(self, s: float) -> np.ndarray:
        """Physical point at local face coordinate ``s`` in [0, 1]."""
        return (1.0 - s) * self.A + s * self.B
