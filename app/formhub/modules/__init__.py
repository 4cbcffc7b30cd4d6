"""
Feature modules live under this package.

Each module owns its models, services and routes, and reuses the platform
primitives (auth, audit, storage, DB session) from app.formhub.
"""
