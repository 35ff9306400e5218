# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Callable, Optional, Tuple
import asyncio
import logging

import uvicorn

class Server:
    server : uvicorn.Server
    loop : Optional[asyncio.AbstractEventLoop] = None

    def __init__(self, app : Callable,
                 bind : Tuple[str,int],
                 cert : Optional[str] = None, key : Optional[str] = None):
        config = uvicorn.Config(
            host = bind[0],
            port = bind[1],
            app = app,
            timeout_graceful_shutdown = 0,
            workers = 0,
            log_config = {'version': 1})

        if cert and key:
            logging.debug('cert %s key %s', cert, key)
            config.ssl_certfile = cert
            config.ssl_keyfile = key

        self.server = uvicorn.Server(config)

    def shutdown(self):
        logging.debug('uvicorn_main.Server.shutdown')
        self.server.should_exit = True

    def run(self):
        logging.debug('uvicorn_main.Server.run')
        self.loop = asyncio.new_event_loop()
        try:
            self.loop.run_until_complete(self.server.serve())
        finally:
            self.loop.close()
