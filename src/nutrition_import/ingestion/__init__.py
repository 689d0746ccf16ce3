"""
Ingestion — reading the delimited dataset files and normalizing rows.

This module is the front half of the import pipeline: it turns raw
``food.csv`` / ``nutrient.csv`` / … rows into typed entities, or into
explicit skip outcomes for rows that cannot be parsed.
"""
