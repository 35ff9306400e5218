# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Dict, List, Optional, Pattern
from enum import Enum

RECOVERABLE_FORWARD_ERROR_MESSAGE = 'Recoverable Forward Failure'

class ConfigurationError(Exception):
    pass

# what a delivery primitive raises, though any exception is accepted
# and classified by its message
class DeliveryError(Exception):
    pass

class DeliveryErrorKind(Enum):
    # the platform has not confirmed ownership of the destination
    UNVERIFIED = 'unverified'
    # aka transient/temporary/soft: likely to succeed later without
    # operator intervention
    RECOVERABLE = 'recoverable'
    # aka permanent/persistent/hard
    UNRECOVERABLE = 'unrecoverable'

def classify_delivery_error(message : str,
                            unverified_message : str,
                            recoverable_re : Pattern) -> DeliveryErrorKind:
    if message == unverified_message:
        return DeliveryErrorKind.UNVERIFIED
    if recoverable_re.search(message):
        return DeliveryErrorKind.RECOVERABLE
    return DeliveryErrorKind.UNRECOVERABLE


class ForwardErrorRecord:
    group_id : int
    address_id : int
    address : str
    message : str
    kind : DeliveryErrorKind

    def __init__(self, group_id : int, address_id : int, address : str,
                 message : str, kind : DeliveryErrorKind):
        self.group_id = group_id
        self.address_id = address_id
        self.address = address
        self.message = message
        self.kind = kind

    def to_json(self) -> Dict[str, object]:
        return {'redundantDestinationId': self.group_id,
                'simpleDestinationId': self.address_id,
                'simpleDestination': self.address,
                'errorMessage': self.message,
                'kind': self.kind.value}

    def __repr__(self):
        return str(self.to_json())


# Raised when a forward failed only due to recoverable (and possibly
# unverified) errors. Propagated out of the whole flow so the sending
# MTA retries the message later.
class RecoverableForwardError(Exception):
    errors : List[BaseException]
    error_records : List[ForwardErrorRecord]

    def __init__(self, errors : List[BaseException],
                 error_records : Optional[List[ForwardErrorRecord]] = None):
        detail = '; '.join(r.address + ': ' + r.message
                           for r in (error_records or []))
        super().__init__(RECOVERABLE_FORWARD_ERROR_MESSAGE +
                         ((' (%s)' % detail) if detail else ''))
        self.errors = errors
        self.error_records = error_records or []
