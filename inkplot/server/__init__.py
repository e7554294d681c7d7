"""HTTP surface for the plotter controller."""
