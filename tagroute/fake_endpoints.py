# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Dict, List, Optional, Tuple
import logging

from tagroute.delivery_error import DeliveryError
from tagroute.message import InboundMessage

# (rcpt_to, headers)
Forward = Tuple[str, Dict[str, str]]

class FakeMessage(InboundMessage):
    """InboundMessage with scripted forward() outcomes.

    expect_forward(addr, err) queues an outcome for the next forward to
    addr: None succeeds, a str raises DeliveryError(err), an Exception
    is raised as-is. Addresses without queued outcomes succeed.
    """
    forwards : List[Forward]
    rejects : List[str]
    outcomes : Dict[str, List[Optional[object]]]

    def __init__(self, to : str, mail_from : str = 'random@internet.com',
                 raw_size : Optional[int] = None,
                 headers : Optional[Dict[str, str]] = None):
        self.to = to
        self.mail_from = mail_from
        self.raw_size = raw_size
        self.headers = headers if headers is not None else {}
        self.forwards = []
        self.rejects = []
        self.outcomes = {}

    def expect_forward(self, rcpt_to : str, err : Optional[object] = None):
        self.outcomes.setdefault(rcpt_to, []).append(err)

    async def forward(self, rcpt_to : str, headers : Dict[str, str]):
        logging.debug('FakeMessage.forward %s %s', rcpt_to, headers)
        self.forwards.append((rcpt_to, headers))
        queued = self.outcomes.get(rcpt_to, [])
        err = queued.pop(0) if queued else None
        if err is None:
            return
        if isinstance(err, Exception):
            raise err
        raise DeliveryError(err)

    def set_reject(self, reason : str):
        logging.debug('FakeMessage.set_reject %s', reason)
        self.rejects.append(reason)

    def forwarded_to(self) -> List[str]:
        return [rcpt for rcpt, headers in self.forwards]
