"""Statistics, caching and AI helpers shared by the route handlers."""
