"""
schemas/ — Pydantic request/response models for the ledgersync API

Provides input validation, auto-generated OpenAPI docs, and
consistent error bodies across all endpoints.
"""
