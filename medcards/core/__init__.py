"""Application plumbing: logging, errors, middleware and lifespan."""
