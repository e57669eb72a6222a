from .local_operator import LocalOperator
from .grid_operator import GridOperator
__all__ = ['LocalOperator', 'GridOperator']
