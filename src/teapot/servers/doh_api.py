import asyncio
import functools
import logging
from typing import Any, Optional

from teapot.event_log import reset_trace_id, set_trace_id
from teapot.pipeline import DohPipeline
from teapot.request import DohRequest
from teapot.response import DohResponse

logger = logging.getLogger("teapot.doh_api")

TRACE_HEADER = "x-trace-id"


class _AnyMethodEndpoint:
    """Brief: ASGI wrapper so starlette routes every HTTP method to handler.

    Inputs:
    - handler: async callable(Request) -> Response

    Outputs:
    - ASGI app. Starlette only restricts methods for plain function
      endpoints; a callable instance registered with methods=None matches
      all of them, leaving the 405 decision to the pipeline.
    """

    def __init__(self, handler) -> None:
        from starlette.routing import request_response

        self._app = request_response(handler)

    async def __call__(self, scope, receive, send) -> None:
        await self._app(scope, receive, send)


def _handle_with_trace(
    pipeline: DohPipeline, doh_request: DohRequest, trace_id: str
) -> DohResponse:
    """Brief: Run the pipeline in a worker thread with the request trace id bound.

    Inputs:
    - pipeline: DohPipeline
    - doh_request: normalized request
    - trace_id: value of the X-Trace-Id header ("" when absent)

    Outputs:
    - DohResponse
    """
    token = set_trace_id(trace_id) if trace_id else None
    try:
        return pipeline.handle(doh_request)
    finally:
        if token is not None:
            reset_trace_id(token)


def create_doh_app(pipeline: DohPipeline) -> Any:
    """
    Brief: Create FastAPI app exposing the DoH pipeline (RFC 8484).

    Inputs:
    - pipeline: DohPipeline handling every request

    Outputs:
    - FastAPI application. All paths and methods reach the pipeline, which
      answers /dns-query and produces the 404/405 responses for the rest.

    Example:
      >>> # app = create_doh_app(DohPipeline(blocklist, cache, upstream))
    """

    from fastapi import FastAPI, Request, Response

    app = FastAPI(
        title="teapot DoH",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    async def doh_endpoint(request: Request) -> Response:
        """
        Brief: Translate the HTTP request, run the pipeline off the event loop.

        Inputs:
        - request: FastAPI Request

        Outputs:
        - Response mirroring the pipeline's DohResponse.
        """
        body = await request.body()
        doh_request = DohRequest(
            method=request.method,
            path=request.url.path,
            query_params=dict(request.query_params),
            body=body,
            url=str(request.url),
        )
        trace_id = request.headers.get(TRACE_HEADER, "")
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None,
                functools.partial(_handle_with_trace, pipeline, doh_request, trace_id),
            )
        except Exception:
            logger.exception("pipeline raised")
            return Response(
                content=b"Internal error\n",
                status_code=500,
                media_type="text/plain; charset=utf-8",
            )
        return Response(
            content=result.body,
            status_code=result.status,
            headers=result.headers,
        )

    app.add_route("/{path:path}", _AnyMethodEndpoint(doh_endpoint))
    return app


def run_doh_server(
    app: Any,
    host: str,
    port: int,
    *,
    cert_file: Optional[str] = None,
    key_file: Optional[str] = None,
    log_level: str = "info",
) -> None:
    """Brief: Serve the DoH app with uvicorn until interrupted.

    Inputs:
    - app: ASGI application from create_doh_app()
    - host: listen address
    - port: listen port
    - cert_file: optional TLS certificate path
    - key_file: optional TLS key path
    - log_level: uvicorn log level

    Outputs:
    - None (blocks)
    """
    import uvicorn

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level=log_level,
        ssl_certfile=cert_file or None,
        ssl_keyfile=key_file or None,
    )
    server = uvicorn.Server(config)
    logger.info("Starting DoH server on %s:%d", host, port)
    server.run()
