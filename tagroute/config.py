# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Awaitable, Callable, Dict, List, Optional, Pattern
from dataclasses import dataclass
from functools import partial
import logging
import re

from tagroute.address import split_list
from tagroute.delivery_error import ConfigurationError
from tagroute.kv_store import DictKvStore, KvStore

RECOVERABLE_FORWARD_IMPLEMENTATION_ERROR_MESSAGE = (
    'could not send email: Unknown error: transient error')

# https://html.spec.whatwg.org/multipage/input.html#valid-e-mail-address
VALID_EMAIL_ADDRESS_REGEXP = (
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)*$")

# All values are strings as they would be found in the process
# environment.
DEFAULTS : Dict[str, str] = {
    # environment only
    'USE_STORED_ADDRESS_CONFIGURATION': 'true',
    'USE_STORED_USER_CONFIGURATION': 'true',
    'USE_STORED_FORMAT_CONFIGURATION': 'false',
    'USE_STORED_HEADER_CONFIGURATION': 'false',
    'USE_STORED_ERROR_MESSAGE_CONFIGURATION': 'false',
    'CONSOLE_LOG_ENABLED': 'false',

    # address
    'DESTINATION': '',
    'REJECT_TREATMENT': ': Invalid recipient',
    'SUBADDRESSES': '*',
    'USERS': '',

    # format
    # The 4 separators must all be different, must not be '*' or '@'
    # and must not occur in a user, subaddress or destination
    # domain. ' ' or one of '"(),:;<>[\]' which may not appear in an
    # unquoted local-part are good choices.
    'FORMAT_REDUNDANT_ADDRESS_SEPARATOR': ',',
    'FORMAT_SIMPLE_ADDRESS_SEPARATOR': ':',
    'FORMAT_LOCAL_PART_SEPARATOR': '+',
    'FORMAT_REJECT_SEPARATOR': ';',
    'FORMAT_VALID_CUSTOM_HEADER_REGEXP': 'X-.*',
    'FORMAT_VALID_EMAIL_ADDRESS_REGEXP': VALID_EMAIL_ADDRESS_REGEXP,

    # header
    'CUSTOM_HEADER': 'X-My-Email-Forwarding',
    'CUSTOM_HEADER_FAIL': 'fail',
    'CUSTOM_HEADER_PASS': 'pass',

    # error message
    'UNVERIFIED_DESTINATION_ERROR_MESSAGE':
        'destination address not verified',
    'RECOVERABLE_FORWARD_IMPLEMENTATION_ERROR_REGEXP':
        '(^' + re.escape(RECOVERABLE_FORWARD_IMPLEMENTATION_ERROR_MESSAGE) + ')',
}

ADDRESS_FIELDS = ['DESTINATION', 'REJECT_TREATMENT', 'SUBADDRESSES', 'USERS']
FORMAT_FIELDS = [
    'FORMAT_REDUNDANT_ADDRESS_SEPARATOR',
    'FORMAT_SIMPLE_ADDRESS_SEPARATOR',
    'FORMAT_LOCAL_PART_SEPARATOR',
    'FORMAT_REJECT_SEPARATOR',
    'FORMAT_VALID_CUSTOM_HEADER_REGEXP',
    'FORMAT_VALID_EMAIL_ADDRESS_REGEXP' ]
HEADER_FIELDS = ['CUSTOM_HEADER', 'CUSTOM_HEADER_FAIL', 'CUSTOM_HEADER_PASS']
ERROR_MESSAGE_FIELDS = [
    'UNVERIFIED_DESTINATION_ERROR_MESSAGE',
    'RECOVERABLE_FORWARD_IMPLEMENTATION_ERROR_REGEXP' ]

# prefix of the kv key of a stored global e.g. '@DESTINATION'
GLOBAL_KEY_PREFIX = '@'

def boolean_from_string(s : str) -> bool:
    return s.strip().lower() in ['true', '1']

def is_email_address(treatment : str) -> bool:
    return '@' in treatment

Resolver = Callable[[], Awaitable[Optional[str]]]

async def first_resolved(resolvers : List[Resolver]) -> Optional[str]:
    for resolver in resolvers:
        if (value := await resolver()) is not None:
            return value
    return None


@dataclass(frozen=True)
class EffectivePolicy:
    global_destination : str
    global_reject_treatment : str
    global_subaddresses : str
    global_users : str
    # REJECT_TREATMENT from the environment (or default), never stored
    environment_reject_treatment : str

    group_separator : str
    failover_separator : str
    local_part_separator : str
    reject_separator : str
    valid_email_address_re : Pattern
    valid_custom_header_re : Pattern

    custom_header : str
    custom_header_pass : str
    custom_header_fail : str

    unverified_destination_error_message : str
    recoverable_error_re : Pattern

    use_stored_user_configuration : bool
    console_log_enabled : bool

    def users_allow(self, user : str) -> bool:
        return (self.global_users == '*' or
                user in split_list(self.global_users, self.group_separator))

    def pass_headers(self) -> Dict[str, str]:
        return {self.custom_header: self.custom_header_pass}

    def fail_headers(self) -> Dict[str, str]:
        return {self.custom_header: self.custom_header_fail}


@dataclass(frozen=True)
class UserPolicy:
    user : str
    # the user key was present in the store, possibly as ''
    found : bool
    destination : str
    reject_treatment : str
    # e.g. '*', 'a, b', '+*' (required, any), '+a, b' (required, listed)
    subaddresses : str
    local_part_separator : str
    group_separator : str

    def requires_subaddress(self) -> bool:
        return self.subaddresses.startswith(self.local_part_separator)

    def _concrete_subaddresses(self) -> str:
        if self.requires_subaddress():
            return self.subaddresses[len(self.local_part_separator):]
        return self.subaddresses

    def subaddress_allowed(self, subaddress : str) -> bool:
        if subaddress == '':
            return not self.requires_subaddress()
        concrete = self._concrete_subaddresses()
        return (concrete.strip() == '*' or
                subaddress in split_list(concrete, self.group_separator))


def _compile(name : str, pattern : str) -> Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigurationError('invalid %s %s: %s' % (name, pattern, e))

def _validate_separators(separators : Dict[str, str]):
    for name, sep in separators.items():
        if sep == '' or sep in ['*', '@']:
            raise ConfigurationError('invalid %s %r' % (name, sep))
    if len(set(separators.values())) != len(separators):
        raise ConfigurationError(
            'separators must all be different %s' % separators)


class ConfigResolver:
    """Merges built-in defaults, the environment and the kv store into
    an EffectivePolicy and per-user UserPolicy.

    Each field is resolved stored -> environment -> default, first
    non-None wins. Whether a domain's stored values are consulted at
    all is controlled by the USE_STORED_*_CONFIGURATION environment
    flags.
    """
    environment : Dict[str, str]
    kv_store : KvStore

    def __init__(self, environment : Dict[str, object],
                 kv_store : Optional[KvStore] = None):
        self.environment = {
            k: str(v) for k,v in environment.items() if v is not None }
        self.kv_store = kv_store if kv_store is not None else DictKvStore()

    def _environment_or_default(self, name : str) -> str:
        if (value := self.environment.get(name, None)) is not None:
            return value
        return DEFAULTS[name]

    def flag(self, name : str) -> bool:
        return boolean_from_string(self._environment_or_default(name))

    async def _stored(self, load : bool, key : str) -> Optional[str]:
        if not load:
            return None
        # None: absent, '' is a real value
        return await self.kv_store.get(key)

    async def _environment(self, name : str) -> Optional[str]:
        return self.environment.get(name, None)

    async def _default(self, name : str) -> Optional[str]:
        return DEFAULTS.get(name, None)

    def resolvers(self, name : str, load_stored : bool) -> List[Resolver]:
        return [partial(self._stored, load_stored, GLOBAL_KEY_PREFIX + name),
                partial(self._environment, name),
                partial(self._default, name)]

    async def resolve_field(self, name : str, load_stored : bool) -> str:
        value = await first_resolved(self.resolvers(name, load_stored))
        assert value is not None, name
        return value

    async def resolve(self) -> EffectivePolicy:
        load_address = self.flag('USE_STORED_ADDRESS_CONFIGURATION')
        load_format = self.flag('USE_STORED_FORMAT_CONFIGURATION')
        load_header = self.flag('USE_STORED_HEADER_CONFIGURATION')
        load_error = self.flag('USE_STORED_ERROR_MESSAGE_CONFIGURATION')

        address = {}
        for name in ADDRESS_FIELDS:
            address[name] = await self.resolve_field(name, load_address)
        fmt = {}
        for name in FORMAT_FIELDS:
            fmt[name] = await self.resolve_field(name, load_format)
        header = {}
        for name in HEADER_FIELDS:
            header[name] = await self.resolve_field(name, load_header)
        error = {}
        for name in ERROR_MESSAGE_FIELDS:
            error[name] = await self.resolve_field(name, load_error)
        logging.debug('ConfigResolver.resolve %s %s %s %s',
                      address, fmt, header, error)

        _validate_separators(
            {k: v for k,v in fmt.items() if k.endswith('_SEPARATOR')})

        valid_custom_header_re = _compile(
            'FORMAT_VALID_CUSTOM_HEADER_REGEXP',
            fmt['FORMAT_VALID_CUSTOM_HEADER_REGEXP'])
        custom_header = header['CUSTOM_HEADER'].strip()
        if not valid_custom_header_re.match(custom_header):
            raise ConfigurationError('Invalid custom header %s' % custom_header)

        return EffectivePolicy(
            global_destination = address['DESTINATION'].strip(),
            global_reject_treatment = address['REJECT_TREATMENT'].strip(),
            global_subaddresses = address['SUBADDRESSES'].strip().lower(),
            global_users = address['USERS'].strip().lower(),
            environment_reject_treatment = self._environment_or_default(
                'REJECT_TREATMENT').strip(),
            group_separator = fmt['FORMAT_REDUNDANT_ADDRESS_SEPARATOR'],
            failover_separator = fmt['FORMAT_SIMPLE_ADDRESS_SEPARATOR'],
            local_part_separator = fmt['FORMAT_LOCAL_PART_SEPARATOR'],
            reject_separator = fmt['FORMAT_REJECT_SEPARATOR'],
            valid_email_address_re = _compile(
                'FORMAT_VALID_EMAIL_ADDRESS_REGEXP',
                fmt['FORMAT_VALID_EMAIL_ADDRESS_REGEXP']),
            valid_custom_header_re = valid_custom_header_re,
            custom_header = custom_header,
            custom_header_pass = header['CUSTOM_HEADER_PASS'].strip(),
            custom_header_fail = header['CUSTOM_HEADER_FAIL'].strip(),
            unverified_destination_error_message = error[
                'UNVERIFIED_DESTINATION_ERROR_MESSAGE'],
            recoverable_error_re = _compile(
                'RECOVERABLE_FORWARD_IMPLEMENTATION_ERROR_REGEXP',
                error['RECOVERABLE_FORWARD_IMPLEMENTATION_ERROR_REGEXP']),
            use_stored_user_configuration = self.flag(
                'USE_STORED_USER_CONFIGURATION'),
            console_log_enabled = self.flag('CONSOLE_LOG_ENABLED'))

    async def resolve_user(self, policy : EffectivePolicy,
                           user : str) -> UserPolicy:
        load = policy.use_stored_user_configuration
        # `${destination}${reject separator}${reject treatment}`
        stored = await self._stored(load, user)
        stored_subaddresses = await self._stored(
            load, user + policy.local_part_separator)
        logging.debug('ConfigResolver.resolve_user %s %r %r',
                      user, stored, stored_subaddresses)

        # An empty stored value means "no subaddresses" and is not
        # overridden by the global value.
        if stored_subaddresses is not None:
            subaddresses = stored_subaddresses.strip().lower()
        else:
            subaddresses = policy.global_subaddresses

        # Empty destination or reject treatment segments fall back to
        # the global values.
        destination = policy.global_destination
        reject_treatment = policy.global_reject_treatment
        if stored is not None:
            segments = stored.split(policy.reject_separator)
            destination = segments[0].strip() or destination
            if len(segments) > 1:
                reject_treatment = segments[1].strip() or reject_treatment

        return UserPolicy(
            user = user,
            found = stored is not None,
            destination = destination,
            reject_treatment = reject_treatment,
            subaddresses = subaddresses,
            local_part_separator = policy.local_part_separator,
            group_separator = policy.group_separator)
