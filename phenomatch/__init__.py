"""Backend package: catalog, pipelines, API.

This package orchestrates signal gathering (landmarks, embeddings, vision),
hybrid fusion and ranking of reference phenotypes for a face image.
"""
