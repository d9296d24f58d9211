"""Modelia Studio — FastAPI REST API layer.

Modules
-------
main
    Application factory, route handlers, error envelope and the ``main()``
    CLI entry point.
models
    Pydantic models for request validation and camelCase responses.
dependencies
    Service container wiring and bearer-token authentication.
uploads
    Streaming storage of uploaded images.
"""
