"""
Blog API service package.

Serves users, blog posts and login over HTTP, with an optional Redis
read-through cache in front of the list and detail endpoints.

Structure:
- app.main: FastAPI service, routes and lifecycle wiring.
- app.caching: Redis client, per-route cache middleware and presets.
- app.domain: Models, authentication and the blog/user services.
- app.persistence: Document store implementations.
- app.health: Health, readiness and liveness checks.
"""
