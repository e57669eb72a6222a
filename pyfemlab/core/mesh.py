import numpy as np
from typing import Tuple, List, Dict, Optional, Callable, Iterator


from pyfemlab.core.topology import Edge, Node, Element, Cell, Intersection


class Mesh:
    """
    Hierarchically refined 2-D mesh of triangles or quadrilaterals.

    The mesh keeps a refinement forest of :class:`Cell` objects and exposes
    its *leaf view*: the active elements, their unique edges, neighbour
    relations and boundary intersections. Red refinement (1 -> 4 children) is
    driven through ``mark`` / ``pre_adapt`` / ``adapt`` / ``post_adapt``;
    only refinement is supported. Leaf element ids are renumbered on every
    ``adapt``; node ids are stable since vertices are never removed.

    Edges of the leaf view that are refined on one side only carry *hanging*
    vertices, see :meth:`hanging_nodes_on_edge`.
    """
    # Defines the local-corner indices that form each edge, in CCW order.
    _EDGE_TABLE = {
        'tri':  ((0, 1), (1, 2), (2, 0)),
        'quad': ((0, 1), (1, 2), (2, 3), (3, 0)),
    }

    def __init__(self,
                 nodes: List['Node'],
                 element_connectivity: np.ndarray,
                 *,
                 element_type: str = 'tri'):
        """
        Initializes the mesh and builds its leaf topology.

        Parameters
        ----------
        nodes : list of Node
            Vertices; ``nodes[i].id`` must equal ``i``.
        element_connectivity : (n_elements, n_corners) array_like
            Corner node ids of each element in counter-clockwise order.
        element_type : {'tri', 'quad'}
        """
        if element_type not in self._EDGE_TABLE:
            raise ValueError(f"Unsupported element type '{element_type}'.")
        n_corners = len(self._EDGE_TABLE[element_type])
        conn = np.asarray(element_connectivity, dtype=int)
        if conn.size == 0:
            conn = conn.reshape(0, n_corners)
        if conn.ndim != 2 or conn.shape[1] != n_corners:
            raise ValueError(f"'{element_type}' connectivity must have shape (n, {n_corners}), "
                             f"got {conn.shape}.")
        for i, nd in enumerate(nodes):
            if nd.id != i:
                raise ValueError(f"Node at position {i} has id {nd.id}; ids must be contiguous.")
        if conn.size and (conn.min() < 0 or conn.max() >= len(nodes)):
            raise ValueError("Connectivity references unknown node ids.")

        self.element_type = element_type
        self.spatial_dim = 2
        self.nodes_list: List['Node'] = list(nodes)
        self._cells: List[Cell] = [Cell(id=i, corners=tuple(int(c) for c in row))
                                   for i, row in enumerate(conn)]
        self._midpoints: Dict[Tuple[int, int], int] = {}
        self._centers: Dict[int, int] = {}
        self._boundary: Dict[Tuple[int, int], str] = {}
        self._marks: Dict[int, int] = {}
        self._new_cells: set = set()
        self.generation = 0

        edge_count: Dict[Tuple[int, int], int] = {}
        for cell in self._cells:
            for c1, c2 in self._EDGE_TABLE[element_type]:
                key = self._key(cell.corners[c1], cell.corners[c2])
                edge_count[key] = edge_count.get(key, 0) + 1
        for key, count in edge_count.items():
            if count > 2:
                raise ValueError(f"Edge {key} is shared by {count} elements.")
            if count == 1:
                self._boundary[key] = ""

        self._build_leaf_view()

    @staticmethod
    def _key(a: int, b: int) -> Tuple[int, int]:
        return (a, b) if a < b else (b, a)

    def _build_leaf_view(self):
        """
        Builds the leaf topology: Elements, Edges, and Neighbors.
        """
        edge_defs = self._EDGE_TABLE[self.element_type]
        n_corners = len(edge_defs)
        leaves = [c for c in self._cells if c.is_leaf]

        self.nodes_x_y_pos = np.array([[n.x, n.y] for n in self.nodes_list], dtype=float).reshape(-1, 2)
        self.nodes = np.array([n.id for n in self.nodes_list], dtype=int)
        self.elements_connectivity = np.array([c.corners for c in leaves], dtype=int).reshape(-1, n_corners)
        self.corner_connectivity = self.elements_connectivity
        self.n_elements = len(leaves)

        # Step 1: Create Element objects
        self.elements_list: List['Element'] = []
        for eid, cell in enumerate(leaves):
            xy = self.nodes_x_y_pos[list(cell.corners)]
            self.elements_list.append(Element(
                id=eid,
                nodes=cell.corners,
                element_type=self.element_type,
                level=cell.level,
                cell=cell.id,
                centroid_x=float(xy[:, 0].mean()),
                centroid_y=float(xy[:, 1].mean()),
            ))

        # Step 2: Map each leaf edge to the (element, local edge) pairs sharing it
        edge_incidences: Dict[Tuple[int, int], List[Tuple[int, int]]] = {}
        for elem in self.elements_list:
            for lid, (c1, c2) in enumerate(edge_defs):
                key = self._key(elem.nodes[c1], elem.nodes[c2])
                edge_incidences.setdefault(key, []).append((elem.id, lid))

        # Step 3: Create unique Edge objects
        self.edges_list: List['Edge'] = []
        self._edge_dict: Dict[Tuple[int, int], 'Edge'] = {}
        for gid, (key, shared) in enumerate(edge_incidences.items()):
            left_eid, lid = shared[0]
            corners = self.elements_list[left_eid].nodes
            vA, vB = corners[edge_defs[lid][0]], corners[edge_defs[lid][1]]
            right_eid = shared[1][0] if len(shared) > 1 else None
            length = float(np.linalg.norm(self.nodes_x_y_pos[vB] - self.nodes_x_y_pos[vA]))
            edge_obj = Edge(gid=gid, nodes=(vA, vB), left=left_eid, right=right_eid,
                            normal=self._compute_normal((vA, vB)), lid=lid,
                            boundary=key in self._boundary, tag=self._boundary.get(key, ""),
                            length=length)
            self.edges_list.append(edge_obj)
            self._edge_dict[key] = edge_obj

        # Step 4: Populate each Element's edges and neighbours
        self._vertex_elements: Dict[int, List[int]] = {}
        for elem in self.elements_list:
            gids = []
            for lid, (c1, c2) in enumerate(edge_defs):
                edge = self._edge_dict[self._key(elem.nodes[c1], elem.nodes[c2])]
                gids.append(edge.gid)
                elem.neighbors[lid] = edge.right if edge.left == elem.id else edge.left
            elem.edges = tuple(gids)
            for v in elem.nodes:
                self._vertex_elements.setdefault(v, []).append(elem.id)

    def _compute_normal(self, directed_edge_nodes: Tuple[int, int]) -> np.ndarray:
        """Computes an outward-pointing unit normal for a directed (CCW) edge."""
        v_start, v_end = self.nodes_x_y_pos[directed_edge_nodes[0]], self.nodes_x_y_pos[directed_edge_nodes[1]]
        directed_vec = v_end - v_start
        raw_normal = np.array([directed_vec[1], -directed_vec[0]], dtype=float)
        length = np.linalg.norm(raw_normal)
        return raw_normal / length if length > 1e-14 else np.array([0.0, 0.0])

    # --- Entity access ---

    def edge(self, edge_id: int) -> 'Edge':
        """Return the leaf edge with global id *edge_id*."""
        if 0 <= edge_id < len(self.edges_list):
            return self.edges_list[edge_id]
        raise IndexError(f"Edge ID {edge_id} out of range.")

    def edge_between(self, a: int, b: int) -> Optional['Edge']:
        return self._edge_dict.get(self._key(a, b))

    def vertex_elements(self, node_id: int) -> List[int]:
        """Leaf elements having *node_id* as a corner."""
        return list(self._vertex_elements.get(node_id, ()))

    def element_corners(self, eid: int) -> np.ndarray:
        return self.nodes_x_y_pos[self.elements_connectivity[eid]]

    def intersections(self, eid: int) -> Iterator[Intersection]:
        """Iterate the sides of leaf element *eid* in local edge order."""
        elem = self.elements_list[eid]
        for lid, (c1, c2) in enumerate(self._EDGE_TABLE[self.element_type]):
            edge = self.edges_list[elem.edges[lid]]
            a, b = elem.nodes[c1], elem.nodes[c2]
            owner = edge.left == eid
            yield Intersection(
                element=eid,
                local_index=lid,
                nodes=(a, b),
                A=self.nodes_x_y_pos[a].copy(),
                B=self.nodes_x_y_pos[b].copy(),
                normal=edge.normal if owner else -edge.normal,
                boundary=edge.boundary,
                outside=edge.right if owner else edge.left,
                tag=edge.tag,
            )

    def boundary_intersections(self) -> Iterator[Intersection]:
        for edge in self.edges_list:
            if edge.boundary:
                for ig in self.intersections(edge.left):
                    if ig.local_index == edge.lid:
                        yield ig
                        break

    def tag_boundary_edges(self, tag_functions: Dict[str, Callable[[float, float], bool]]):
        """Applies tags to boundary edges based on their midpoint location.

        Tags are stored on the refinement hierarchy, so edges created by later
        refinement inherit the tag of the edge they were split from.
        """
        for key in self._boundary:
            midpoint = 0.5 * (np.array(tuple(self.nodes_list[key[0]]), dtype=float)
                              + np.array(tuple(self.nodes_list[key[1]]), dtype=float))
            for tag_name, func in tag_functions.items():
                if func(midpoint[0], midpoint[1]):
                    self._boundary[key] = tag_name
                    break
        for edge in self.edges_list:
            if edge.boundary:
                edge.tag = self._boundary[self._key(*edge.nodes)]

    def areas(self) -> np.ndarray:
        """Return element areas (shoelace formula on the corner polygon)."""
        xy = self.nodes_x_y_pos[self.elements_connectivity]
        x, y = xy[..., 0], xy[..., 1]
        return 0.5 * (x * np.roll(y, -1, axis=1) - np.roll(x, -1, axis=1) * y).sum(axis=1)

    # --- Adaptive refinement ---

    def mark(self, refcount: int, eid: int) -> bool:
        """Mark leaf element *eid* for refinement when ``refcount > 0``.

        Non-positive counts clear the mark; coarsening is not supported.
        """
        if not 0 <= eid < self.n_elements:
            raise IndexError(f"Element ID {eid} out of range.")
        cid = self.elements_list[eid].cell
        if refcount > 0:
            self._marks[cid] = int(refcount)
        else:
            self._marks.pop(cid, None)
        return True

    def get_mark(self, eid: int) -> int:
        return self._marks.get(self.elements_list[eid].cell, 0)

    def pre_adapt(self) -> bool:
        """Return True when the next ``adapt`` will change the mesh."""
        return bool(self._marks)

    def adapt(self) -> bool:
        """Refine all marked elements once and rebuild the leaf view."""
        if not self._marks:
            return False
        for cid in sorted(self._marks):
            self._refine_cell(cid)
        self._marks.clear()
        self.generation += 1
        self._build_leaf_view()
        return True

    def post_adapt(self):
        self._new_cells.clear()

    def is_new(self, eid: int) -> bool:
        """True if *eid* was created by the last ``adapt``."""
        return self.elements_list[eid].cell in self._new_cells

    def global_refine(self, levels: int = 1):
        for _ in range(int(levels)):
            for eid in range(self.n_elements):
                self.mark(1, eid)
            self.pre_adapt()
            self.adapt()
            self.post_adapt()

    def _new_node(self, x: float, y: float) -> int:
        nid = len(self.nodes_list)
        self.nodes_list.append(Node(nid, x, y))
        return nid

    def _midpoint(self, a: int, b: int) -> int:
        key = self._key(a, b)
        m = self._midpoints.get(key)
        if m is None:
            na, nb = self.nodes_list[a], self.nodes_list[b]
            m = self._new_node(0.5 * (na.x + nb.x), 0.5 * (na.y + nb.y))
            self._midpoints[key] = m
            if key in self._boundary:
                tag = self._boundary[key]
                self._boundary[self._key(a, m)] = tag
                self._boundary[self._key(m, b)] = tag
        return m

    def _refine_cell(self, cid: int):
        cell = self._cells[cid]
        if not cell.is_leaf:
            return
        if self.element_type == 'tri':
            a, b, c = cell.corners
            mab, mbc, mca = self._midpoint(a, b), self._midpoint(b, c), self._midpoint(c, a)
            children = [(a, mab, mca), (mab, b, mbc), (mca, mbc, c), (mab, mbc, mca)]
        else:
            a, b, c, d = cell.corners
            mab, mbc = self._midpoint(a, b), self._midpoint(b, c)
            mcd, mda = self._midpoint(c, d), self._midpoint(d, a)
            xy = np.array([tuple(self.nodes_list[v]) for v in cell.corners], dtype=float)
            ctr = self._new_node(*xy.mean(axis=0))
            self._centers[cid] = ctr
            children = [(a, mab, ctr, mda), (mab, b, mbc, ctr),
                        (ctr, mbc, c, mcd), (mda, ctr, mcd, d)]
        ids = []
        for corners in children:
            child = Cell(id=len(self._cells), corners=corners, level=cell.level + 1, parent=cid)
            self._cells.append(child)
            self._new_cells.add(child.id)
            ids.append(child.id)
        cell.children = tuple(ids)

    # --- Refinement state of edges ---

    def hanging_nodes_on_edge(self, a: int, b: int) -> List[int]:
        """Vertices lying strictly inside the leaf edge (a, b), ordered from a to b.

        Non-empty only when the neighbour across the edge is finer.
        """
        m = self._midpoints.get(self._key(a, b))
        if m is None:
            return []
        return self.hanging_nodes_on_edge(a, m) + [m] + self.hanging_nodes_on_edge(m, b)

    def hanging_edges(self) -> List[Tuple[int, int, List[int]]]:
        """``(eid, local_edge, hanging_vertices)`` for every non-conforming leaf side."""
        out = []
        for edge in self.edges_list:
            if edge.boundary or edge.right is not None:
                continue
            hanging = self.hanging_nodes_on_edge(*edge.nodes)
            if hanging:
                out.append((edge.left, edge.lid, hanging))
        return out

    def max_hanging_nodes_per_edge(self) -> int:
        return max((len(h) for _, _, h in self.hanging_edges()), default=0)

    @property
    def is_conforming(self) -> bool:
        return not self.hanging_edges()

    def __repr__(self):
        return (f"<Mesh n_nodes={len(self.nodes_list)}, n_elems={self.n_elements}, "
                f"n_edges={len(self.edges_list)}, elem_type='{self.element_type}'>")
