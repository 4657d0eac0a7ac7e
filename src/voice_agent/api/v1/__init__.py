"""V1 API endpoints."""
