# pyfemlab.fem
"""Reference elements, finite-element maps, element geometry and contexts."""
