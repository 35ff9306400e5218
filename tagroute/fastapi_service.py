# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
import logging

from fastapi import (
    FastAPI,
    Request as FastApiRequest,
    Response as FastApiResponse )

METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS']

# Mail is handled out of band; this only answers stray http requests
# (typically crawlers hitting the mail domain) so they show up as
# a single log line rather than a handler error.
def create_app():
    app = FastAPI()

    @app.api_route('/{path:path}', methods=METHODS)
    async def fallback(path : str,
                       request : FastApiRequest) -> FastApiResponse:
        logging.info('fastapi_service.fallback %s %s',
                     request.method, request.url)
        if request.method == 'GET':
            return FastApiResponse('Not Found', status_code=404)
        return FastApiResponse('Method Not Allowed', status_code=405)

    return app
