"""Retrieval package: exact similarity search and the query path.

Submodules are imported directly (``ragstore.retrieval.similarity``,
``ragstore.retrieval.retriever``); nothing is imported eagerly here because
the chunk store depends on the similarity module.
"""
