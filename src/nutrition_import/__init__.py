"""Bulk import of a nutrition reference dataset into a relational store and a vector store."""

__version__ = "0.1.0"
