"""Error rendering for the HTTP layer."""

import structlog
from aiohttp import web

from kypipeline.core.errors import KyPipelineError

logger = structlog.get_logger()


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Render pipeline errors as structured JSON with their HTTP status.

    Unexpected exceptions are logged with traceback and reported as
    ``internal_error``; they are never turned into a success response.
    """
    try:
        return await handler(request)
    except KyPipelineError as e:
        log = logger.warning if e.status < 500 else logger.error
        log("request_failed", path=request.path, kind=e.kind, status=e.status, error=e.message)
        return web.json_response(e.to_payload(), status=e.status)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception("request_crashed", path=request.path)
        payload = {"ok": False, "error": {"kind": "internal_error", "message": str(e) or type(e).__name__}}
        return web.json_response(payload, status=500)
