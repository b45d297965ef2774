"""Tessera - FastAPI REST API layer.

Modules
-------
main
    FastAPI application with the deep zoom routes, the pipeline management
    routes and the ``main()`` CLI entry point.
models
    Pydantic models for API request and response validation.
dzi
    Deep zoom manifest rendering and tile address parsing.
"""
