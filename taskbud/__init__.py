# flake8: noqa
"""
Backend package for the taskbud task-tracking API.

Modules:
    settings: Configuration file handling and environment flags.
    storage:  Task records, blob stores and the full-document task stores.
    remote:   HTTP client and store proxying to an upstream task API.
    backends: Backend selection with permanent fallback between tiers.
    tasks:    CRUD service used by the HTTP layer.
    main:     FastAPI application wiring everything together.
"""
