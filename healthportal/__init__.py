"""Healthcare portal authentication and role-based authorization service.

Layers: ``core`` (config, logging, security, tokens, auth dependencies),
``domain`` (models and role allow-lists), ``infrastructure`` (database,
credential store, Redis), ``services`` (auth workflows, email), ``api``
(FastAPI routers) and ``client`` (session state, API wrapper, router mirror).
"""
