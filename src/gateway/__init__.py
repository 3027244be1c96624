"""FastAPI application exposing the checkout gateway over HTTP."""
