"""
Query layer.

Turns caller intent (specifications, lookup names, declared text,
examples) into QueryPlans and executes them, shaping results into
lists, pages, slices and projections.
"""
