# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import List, Pattern, Tuple, Union
import re

_WHITESPACE_RE = re.compile(r'\s+')
STARTS_WITH_NON_ALPHANUMERIC_RE = re.compile(r'^[^A-Z0-9]', re.IGNORECASE)

# (test, prefix): a str test matches with startswith(), a Pattern with
# search()
PrependCondition = Tuple[Union[str, Pattern], str]


def local_part_from_address(addr : str) -> str:
    return addr.split('@')[0]

# RFC 5233: local-part = user [separator subaddress]
# -> (user, subaddress) both lower case, subaddress == '' if absent
def split_local_part(local_part : str, separator : str) -> Tuple[str, str]:
    lower = local_part.lower()
    i = lower.find(separator)
    if i < 0:
        return lower, ''
    return lower[0:i], lower[i + len(separator):]

def remove_whitespace(s : str) -> str:
    return _WHITESPACE_RE.sub('', s)

def prepend(base : str, conditions : List[PrependCondition]) -> str:
    """Returns base with the prefix of the first matching condition
    prepended, or base unchanged if none match."""
    for test, prefix in conditions:
        if isinstance(test, str):
            matched = base.startswith(test)
        else:
            matched = test.search(base) is not None
        if matched:
            return prefix + base
    return base

# entries of a separated list e.g. 'alice, bob' -> ['alice', 'bob']
def split_list(text : str, separator : str) -> List[str]:
    return [s.strip() for s in text.split(separator) if s.strip()]
