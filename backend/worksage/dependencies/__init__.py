"""FastAPI dependencies: authentication, authorization and service providers."""
