"""FastAPI application package for windowguard."""
