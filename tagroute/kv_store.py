# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Dict, Optional
from abc import ABC, abstractmethod
import logging

import yaml

class KvStore(ABC):
    # None -> key absent; '' is a valid stored value and is returned
    # as-is
    @abstractmethod
    async def get(self, key : str) -> Optional[str]:
        raise NotImplementedError


class DictKvStore(KvStore):
    values : Dict[str, str]

    def __init__(self, values : Optional[Dict[str, str]] = None):
        self.values = {}
        for k,v in (values or {}).items():
            self.values[str(k)] = '' if v is None else str(v)

    async def get(self, key : str) -> Optional[str]:
        return self.values.get(key, None)


class YamlKvStore(DictKvStore):
    """A read-only snapshot of a flat yaml mapping e.g.

    '@USERS': 'alice, bob'
    alice: 'alice@example.com;+spam@example.com'
    'alice+': 'news, shopping'
    """
    filename : str

    def __init__(self, filename : str):
        self.filename = filename
        with open(filename, 'r') as yaml_file:
            values = yaml.load(yaml_file, Loader=yaml.CLoader)
        if values is None:
            values = {}
        assert isinstance(values, dict), filename
        logging.info('YamlKvStore loaded %d keys from %s',
                     len(values), filename)
        super().__init__(values)


def kv_store_from_yaml(yaml : Optional[dict]) -> KvStore:
    if not yaml:
        return DictKvStore()
    if (filename := yaml.get('yaml_file', None)) is not None:
        return YamlKvStore(filename)
    return DictKvStore(yaml.get('map', None))
