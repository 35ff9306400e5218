# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Dict, Mapping, Optional
from abc import ABC, abstractmethod

# The platform's view of an inbound message. Implementations wrap
# whatever the hosting MTA hands over; the routing code only reads
# the envelope and calls forward()/set_reject().
class InboundMessage(ABC):
    mail_from : str
    to : str
    raw_size : Optional[int] = None
    headers : Mapping[str, str]

    # Attempt delivery to one address. Raises on failure; the error
    # is classified by str(exception).
    @abstractmethod
    async def forward(self, rcpt_to : str, headers : Dict[str, str]):
        raise NotImplementedError

    # Permanently reject the message. Must not raise.
    @abstractmethod
    def set_reject(self, reason : str):
        raise NotImplementedError


class MessageImage:
    message_id : Optional[str]
    date : Optional[str]
    mail_from : str
    to : str
    size : Optional[int]

    def __init__(self, message : InboundMessage):
        headers = message.headers if message.headers is not None else {}
        self.message_id = headers.get('Message-ID', None)
        self.date = headers.get('Date', None)
        self.mail_from = message.mail_from
        self.to = message.to
        self.size = message.raw_size

    def to_json(self) -> Dict[str, object]:
        return {'messageId': self.message_id,
                'date': self.date,
                'from': self.mail_from,
                'to': self.to,
                'size': self.size}

    def __repr__(self):
        return str(self.to_json())
