from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from medcards import __version__
from medcards.ai.errors import ComparatorIntegrityError, GatewayError
from medcards.api.routes import batches, cleaning, cloze, essays, sections
from medcards.config import get_settings
from medcards.core.exceptions import comparator_integrity_exception_handler, gateway_exception_handler, global_exception_handler, http_exception_handler, request_validation_exception_handler
from medcards.core.lifespan import lifespan
from medcards.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="medcards", version=__version__, lifespan=lifespan, docs_url="/docs" if settings.debug else None, redoc_url=None)

app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "x-request-id"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(ComparatorIntegrityError, comparator_integrity_exception_handler)
app.add_exception_handler(GatewayError, gateway_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(cleaning.router, prefix="/v1/cleaning", tags=["cleaning"])
app.include_router(sections.router, prefix="/v1/sections", tags=["sections"])
app.include_router(batches.router, prefix="/v1/batches", tags=["batches"])
app.include_router(cloze.router, prefix="/v1/cloze", tags=["cloze"])
app.include_router(essays.router, prefix="/v1/essays", tags=["essays"])
