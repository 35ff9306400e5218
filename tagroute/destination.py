# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import List, Pattern, Set
import logging

from tagroute.address import prepend, remove_whitespace

# A destination spec is a list of groups separated by the group
# separator (default ','), each group a list of redundant addresses
# separated by the failover separator (default ':') e.g.
#   a1@example.com:a2@example.com, b@example.com
# Every group is forwarded to; within a group, addresses are tried
# in order until one succeeds.
Group = List[str]

class DestinationSpec:
    groups : List[Group]
    # non-empty addresses that failed validation
    invalid : List[str]
    # valid addresses dropped because they occurred earlier
    duplicate : List[str]

    def __init__(self):
        self.groups = []
        self.invalid = []
        self.duplicate = []

    def addresses(self) -> List[str]:
        return [a for g in self.groups for a in g]

    def image(self, group_separator : str, failover_separator : str) -> str:
        return group_separator.join(
            failover_separator.join(g) for g in self.groups)

    def warn(self, user : str, destination_type : str):
        for description, addresses in [
                ('invalidly formatted', self.invalid),
                ('duplicate', self.duplicate)]:
            if addresses:
                logging.warning('user %s %s %s destinations %s', user,
                                destination_type, description, addresses)

    def __bool__(self):
        return bool(self.groups)

    def __repr__(self):
        return 'groups=%s invalid=%s duplicate=%s' % (
            self.groups, self.invalid, self.duplicate)


class DestinationValidator:
    group_separator : str
    failover_separator : str
    local_part_separator : str
    valid_email_address_re : Pattern

    def __init__(self, group_separator : str,
                 failover_separator : str,
                 local_part_separator : str,
                 valid_email_address_re : Pattern):
        self.group_separator = group_separator
        self.failover_separator = failover_separator
        self.local_part_separator = local_part_separator
        self.valid_email_address_re = valid_email_address_re

    def is_valid(self, address : str) -> bool:
        return self.valid_email_address_re.search(address) is not None

    # '+tag@example.com' -> 'user+tag@example.com'
    # '@example.com' -> 'user@example.com'
    def qualify(self, candidate : str, user : str) -> str:
        return prepend(remove_whitespace(candidate),
                       [(self.local_part_separator, user), ('@', user)])

    def _parse_group(self, group_text : str, user : str,
                     seen : Set[str], spec : DestinationSpec) -> Group:
        group : Group = []
        for candidate in group_text.split(self.failover_separator):
            address = self.qualify(candidate, user)
            if address == '':
                continue
            if not self.is_valid(address):
                spec.invalid.append(address)
            elif address in seen:
                spec.duplicate.append(address)
            else:
                seen.add(address)
                group.append(address)
        return group

    def parse(self, text : str, user : str) -> DestinationSpec:
        spec = DestinationSpec()
        seen : Set[str] = set()
        for group_text in text.split(self.group_separator):
            group = self._parse_group(group_text, user, seen, spec)
            if group:
                spec.groups.append(group)
        return spec
