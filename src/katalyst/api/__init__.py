"""HTTP API: FastAPI app, routers and middleware."""
