"""API routers for the local control surface."""
