"""Pipeline steps for similarity, measurements, fusion, matching and reporting.

Each step is callable independently; `matching` wires them together for one
image.
"""
