from .functionspace import (Component, GridFunctionSpace, PowerGridFunctionSpace,
                            CompositeGridFunctionSpace)
from .ordering import Ordering, LexicographicOrdering, EntityBlockedOrdering, make_ordering
from .interpolate import (interpolate, set_constrained_dofs, set_nonconstrained_dofs,
                          set_shifted_dofs, copy_constrained_dofs, evaluate, locate_point,
                          l2_error, integrate)

__all__ = [
    "Component", "GridFunctionSpace", "PowerGridFunctionSpace", "CompositeGridFunctionSpace",
    "Ordering", "LexicographicOrdering", "EntityBlockedOrdering", "make_ordering",
    "interpolate", "set_constrained_dofs", "set_nonconstrained_dofs", "set_shifted_dofs",
    "copy_constrained_dofs", "evaluate", "locate_point", "l2_error", "integrate",
]
