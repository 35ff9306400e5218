# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Dict, List, Optional, Pattern
from enum import Enum
import asyncio
import logging

from tagroute.config import EffectivePolicy
from tagroute.delivery_error import (
    DeliveryErrorKind,
    ForwardErrorRecord,
    RecoverableForwardError,
    classify_delivery_error )
from tagroute.destination import Group
from tagroute.message import InboundMessage, MessageImage

# Fan out to all groups of a destination spec concurrently and fan
# the results back in. Within a group, the addresses are redundant
# alternatives tried strictly in order until one succeeds.

# Errors are one of
# unverified: skipped, the next redundant address is tried
# recoverable: aka transient/temporary/soft
# unrecoverable: aka permanent/persistent/hard

# Raising out of forward() causes the platform to return a temporary
# error to the sending MTA which will usually retry until it succeeds
# or gives up. That only makes sense if all of the errors were
# recoverable. If any group failed with an unrecoverable error,
# retrying won't help until an operator fixes something so we return
# the (possibly empty) successful destinations and the caller moves on
# to the next phase.

class ForwardStatus(Enum):
    SUCCESSFUL = 'SuccessfulForwarding'
    RECOVERABLE_ERROR = 'RecoverableErrorForwarding'
    FAILURE = 'FailureForwarding'


class GroupResult:
    group_id : int
    group : Group
    successful_destination : Optional[str] = None
    unverified : List[str]
    # exceptions other than unverified, in attempt order
    errors : List[Exception]
    error_records : List[ForwardErrorRecord]

    def __init__(self, group_id : int, group : Group):
        self.group_id = group_id
        self.group = group
        self.unverified = []
        self.errors = []
        self.error_records = []

    def succeeded(self) -> bool:
        return self.successful_destination is not None

    def _had(self, kind : DeliveryErrorKind) -> bool:
        return any(r.kind == kind for r in self.error_records)

    def had_unrecoverable_error(self) -> bool:
        return self._had(DeliveryErrorKind.UNRECOVERABLE)

    def had_recoverable_error(self) -> bool:
        return self._had(DeliveryErrorKind.RECOVERABLE)

    # delivered or failed only with unverified/recoverable errors
    def succeeded_or_acceptably_failed(self) -> bool:
        return self.succeeded() or not self.had_unrecoverable_error()


class ForwardResult:
    group_results : List[GroupResult]
    status : ForwardStatus

    def __init__(self, group_results : List[GroupResult]):
        self.group_results = group_results
        self.status = self._status()

    def _status(self) -> ForwardStatus:
        if not self.group_results:
            return ForwardStatus.FAILURE
        failed = [r for r in self.group_results if not r.succeeded()]
        if not failed:
            return ForwardStatus.SUCCESSFUL
        # failures that were only unverified are FAILURE: nothing to retry
        if all(r.succeeded_or_acceptably_failed() for r in failed) and any(
                r.had_recoverable_error() for r in failed):
            return ForwardStatus.RECOVERABLE_ERROR
        return ForwardStatus.FAILURE

    def successful_destinations(self) -> List[str]:
        return [r.successful_destination for r in self.group_results
                if r.successful_destination is not None]

    def errors(self) -> List[Exception]:
        return [e for r in self.group_results for e in r.errors]

    def error_records(self) -> List[ForwardErrorRecord]:
        return [e for r in self.group_results for e in r.error_records]

    # the destination was a single address which failed with something
    # other than unverified
    def single_destination_error(self) -> Optional[Exception]:
        if len(self.group_results) != 1:
            return None
        r = self.group_results[0]
        if len(r.group) != 1 or r.succeeded() or not r.errors:
            return None
        return r.errors[0]


class Forwarder:
    message : InboundMessage
    image : MessageImage
    unverified_message : str
    recoverable_re : Pattern
    console_log_enabled : bool

    def __init__(self, message : InboundMessage,
                 policy : EffectivePolicy,
                 image : Optional[MessageImage] = None):
        self.message = message
        self.image = image if image is not None else MessageImage(message)
        self.unverified_message = policy.unverified_destination_error_message
        self.recoverable_re = policy.recoverable_error_re
        self.console_log_enabled = policy.console_log_enabled

    def log_detail(self, fmt, *args):
        if self.console_log_enabled:
            logging.info(fmt, *args)
        else:
            logging.debug(fmt, *args)

    async def forward_to_group(self, group : Group, group_id : int,
                               headers : Dict[str, str]) -> GroupResult:
        result = GroupResult(group_id, group)
        for i, address in enumerate(group):
            address_id = i + 1
            try:
                await self.message.forward(address, dict(headers))
            except Exception as e:
                err_message = str(e)
                kind = classify_delivery_error(
                    err_message, self.unverified_message, self.recoverable_re)
                self.log_detail(
                    'RedundantForward %s group %d address %d %s failed '
                    '%s: %s', self.image, group_id, address_id, address,
                    kind.value, err_message)
                result.error_records.append(ForwardErrorRecord(
                    group_id, address_id, address, err_message, kind))
                if kind == DeliveryErrorKind.UNVERIFIED:
                    result.unverified.append(address)
                else:
                    result.errors.append(e)
                continue
            self.log_detail('RedundantForward %s group %d address %d %s ok',
                             self.image, group_id, address_id, address)
            result.successful_destination = address
            break
        return result

    async def forward_result(self, action : str, groups : List[Group],
                             headers : Dict[str, str]) -> ForwardResult:
        group_results = await asyncio.gather(
            *[self.forward_to_group(group, i + 1, headers)
              for i, group in enumerate(groups)])
        result = ForwardResult(list(group_results))
        logging.info('%s %s destinations %s status %s successful %s '
                     'errors %s', action, self.image, groups,
                     result.status.value, result.successful_destinations(),
                     result.error_records())
        return result

    # -> successful destinations, possibly empty
    # raises RecoverableForwardError if all failures were recoverable, or
    # the delivery exception itself if the destination was a single address
    async def forward(self, action : str, groups : List[Group],
                      headers : Dict[str, str]) -> List[str]:
        result = await self.forward_result(action, groups, headers)
        if result.status == ForwardStatus.RECOVERABLE_ERROR:
            if (err := result.single_destination_error()) is not None:
                raise err
            raise RecoverableForwardError(result.errors(),
                                          result.error_records())
        return result.successful_destinations()
