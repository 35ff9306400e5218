# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Dict, List, Optional
import logging

from tagroute.address import (
    STARTS_WITH_NON_ALPHANUMERIC_RE,
    local_part_from_address,
    prepend,
    split_local_part )
from tagroute.config import (
    DEFAULTS,
    ConfigResolver,
    EffectivePolicy,
    UserPolicy,
    is_email_address )
from tagroute.destination import DestinationValidator
from tagroute.forwarder import Forwarder
from tagroute.kv_store import KvStore
from tagroute.message import InboundMessage, MessageImage

ACCEPT_FORWARDING = 'AcceptForwarding'
REJECT_FORWARDING = 'RejectForwarding'
DIRECT_REJECTING = 'DirectRejecting'

class FlowResult:
    # which phase terminated the flow
    action : str
    destinations : List[str]
    reject_reason : Optional[str] = None

    def __init__(self, action : str,
                 destinations : Optional[List[str]] = None,
                 reject_reason : Optional[str] = None):
        self.action = action
        self.destinations = destinations if destinations else []
        self.reject_reason = reject_reason

    def __repr__(self):
        return '%s destinations=%s reject_reason=%s' % (
            self.action, self.destinations, self.reject_reason)


def direct_reject_reason(policy : EffectivePolicy,
                         user_policy : UserPolicy,
                         local_part : str) -> str:
    """The first of the user, global and environment reject treatments
    that isn't an email address, else the built-in default. A reason
    starting with a non-alphanumeric is prefixed with the message's
    local part e.g. 'alice+spam: Invalid recipient'."""
    reason = DEFAULTS['REJECT_TREATMENT'].strip()
    for treatment in [user_policy.reject_treatment,
                      policy.global_reject_treatment,
                      policy.environment_reject_treatment]:
        if treatment and not is_email_address(treatment):
            reason = treatment
            break
    return prepend(reason, [(STARTS_WITH_NON_ALPHANUMERIC_RE, local_part)])


class PolicyDecisionFlow:
    message : InboundMessage
    resolver : ConfigResolver
    image : MessageImage

    def __init__(self, message : InboundMessage, resolver : ConfigResolver):
        self.message = message
        self.resolver = resolver
        self.image = MessageImage(message)

    def _admitted(self, policy : EffectivePolicy, user_policy : UserPolicy,
                  subaddress : str) -> bool:
        # a user found in the store is allowed regardless of USERS
        user_allowed = user_policy.found or policy.users_allow(user_policy.user)
        subaddress_allowed = user_policy.subaddress_allowed(subaddress)
        logging.debug('PolicyDecisionFlow._admitted %s user %s subaddress %s',
                      self.image, user_allowed, subaddress_allowed)
        return user_allowed and subaddress_allowed

    async def run(self) -> FlowResult:
        policy = await self.resolver.resolve()

        local_part = local_part_from_address(self.message.to)
        user, subaddress = split_local_part(
            local_part, policy.local_part_separator)
        user_policy = await self.resolver.resolve_user(policy, user)

        validator = DestinationValidator(
            policy.group_separator, policy.failover_separator,
            policy.local_part_separator, policy.valid_email_address_re)
        forwarder = Forwarder(self.message, policy, self.image)

        if self._admitted(policy, user_policy, subaddress):
            accept = validator.parse(user_policy.destination, user)
            accept.warn(user, ACCEPT_FORWARDING)
            forwarder.log_detail(
                '%s %s destinations %s', ACCEPT_FORWARDING, self.image,
                accept.image(policy.group_separator, policy.failover_separator))
            # recoverable errors raise through to the sender
            successful = await forwarder.forward(
                ACCEPT_FORWARDING, accept.groups, policy.pass_headers())
            if successful:
                return FlowResult(ACCEPT_FORWARDING, successful)

        reject = validator.parse(user_policy.reject_treatment, user)
        if reject:
            reject.warn(user, REJECT_FORWARDING)
            successful = await forwarder.forward(
                REJECT_FORWARDING, reject.groups, policy.fail_headers())
            if successful:
                return FlowResult(REJECT_FORWARDING, successful)

        reason = direct_reject_reason(policy, user_policy, local_part)
        self.message.set_reject(reason)
        logging.info('%s %s reason %s', DIRECT_REJECTING, self.image, reason)
        return FlowResult(DIRECT_REJECTING, reject_reason=reason)


async def handle_inbound_message(message : InboundMessage,
                                 environment : Dict[str, object],
                                 kv_store : Optional[KvStore] = None
                                 ) -> FlowResult:
    """Forward, reject-forward or reject message per the environment
    and stored configuration. Raises if the sender should retry the
    message later."""
    return await PolicyDecisionFlow(
        message, ConfigResolver(environment, kv_store)).run()
