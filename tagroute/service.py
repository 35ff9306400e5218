# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Dict, Optional
import asyncio
import logging
import logging.config

import yaml

import tagroute.fastapi_service as fastapi_service
import tagroute.uvicorn_main as uvicorn_main

from tagroute.config import ConfigResolver, EffectivePolicy
from tagroute.kv_store import KvStore, kv_store_from_yaml
from tagroute.message import InboundMessage
from tagroute.policy_flow import FlowResult, handle_inbound_message

def environment_from_yaml(yaml : Optional[dict]) -> Dict[str, str]:
    env = {}
    for k,v in (yaml or {}).items():
        if v is None:
            continue
        # yaml true -> 'true' rather than 'True' for readability in
        # logs, boolean_from_string() accepts either
        env[str(k)] = str(v).lower() if isinstance(v, bool) else str(v)
    return env


class Service:
    """Hosts the routing flow: loads the yaml root config, owns the kv
    store and serves the http fallback handler.

    root config:
      environment: {USERS: ..., DESTINATION: ..., ...}
      kv_store: {map: {...}} or {yaml_file: path}
      http_listener: {addr: [host, port], cert: ..., key: ...}
      logging: logging.config.dictConfig() yaml
    """
    root_yaml : Optional[dict] = None
    environment : Dict[str, str]
    kv_store : Optional[KvStore] = None
    http_server : Optional[uvicorn_main.Server] = None

    def __init__(self, root_yaml : Optional[dict] = None):
        self.root_yaml = root_yaml
        self.environment = {}

    def load(self, config_filename : str):
        with open(config_filename, 'r') as yaml_file:
            self.root_yaml = yaml.load(yaml_file, Loader=yaml.CLoader)

    def configure(self):
        assert self.root_yaml is not None
        logging_yaml = self.root_yaml.get('logging', None)
        if logging_yaml:
            logging.config.dictConfig(logging_yaml)
        self.environment = environment_from_yaml(
            self.root_yaml.get('environment', None))
        self.kv_store = kv_store_from_yaml(
            self.root_yaml.get('kv_store', None))

    def resolver(self) -> ConfigResolver:
        return ConfigResolver(self.environment, self.kv_store)

    # raises ConfigurationError on operator misconfiguration
    async def check_config(self) -> EffectivePolicy:
        policy = await self.resolver().resolve()
        logging.info('Service.check_config %s', policy)
        return policy

    async def handle_inbound_message(self, message : InboundMessage
                                     ) -> FlowResult:
        return await handle_inbound_message(
            message, self.environment, self.kv_store)

    def shutdown(self):
        logging.info('Service.shutdown')
        if self.http_server:
            self.http_server.shutdown()

    def main(self, config_filename : Optional[str] = None):
        if config_filename:
            self.load(config_filename)
        self.configure()
        asyncio.run(self.check_config())

        assert self.root_yaml is not None
        if (listener_yaml := self.root_yaml.get('http_listener', None)) is None:
            logging.info('Service.main no http_listener')
            return
        addr = listener_yaml.get('addr', ['localhost', 8000])
        self.http_server = uvicorn_main.Server(
            fastapi_service.create_app(), (addr[0], int(addr[1])),
            listener_yaml.get('cert', None), listener_yaml.get('key', None))
        self.http_server.run()
