"""
Serving — FastAPI application for triggering imports and searching foods.

The importer is wired once from :mod:`nutrition_import.config`; tests
replace it through ``app.dependency_overrides``.
"""
