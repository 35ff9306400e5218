# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
import unittest
import logging

from tagroute.delivery_error import (
    ConfigurationError,
    DeliveryError,
    RecoverableForwardError )
from tagroute.fake_endpoints import FakeMessage
from tagroute.kv_store import DictKvStore
from tagroute.policy_flow import (
    ACCEPT_FORWARDING,
    DIRECT_REJECTING,
    REJECT_FORWARDING,
    handle_inbound_message )

PASS = {'X-My-Email-Forwarding': 'pass'}
FAIL = {'X-My-Email-Forwarding': 'fail'}

UNVERIFIED = 'destination address not verified'
TRANSIENT = 'transient: try again'
PERMANENT = 'Service failure'

class PolicyFlowTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        logging.basicConfig(level=logging.DEBUG,
                            format='%(asctime)s %(message)s')

    def env(self, **kwargs):
        env = {'RECOVERABLE_FORWARD_IMPLEMENTATION_ERROR_REGEXP': '^transient'}
        env.update(kwargs)
        return env

    async def test_accept(self):
        msg = FakeMessage('user1@domain.com')
        result = await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='user@email.com'))
        self.assertEqual(ACCEPT_FORWARDING, result.action)
        self.assertEqual(['user@email.com'], result.destinations)
        self.assertEqual([('user@email.com', PASS)], msg.forwards)
        self.assertEqual([], msg.rejects)

    async def test_user_case(self):
        msg = FakeMessage('User1+SubA@domain.com')
        result = await handle_inbound_message(
            msg, self.env(USERS='USER1', SUBADDRESSES='suba',
                          DESTINATION='+inbox@email.com'))
        self.assertEqual(ACCEPT_FORWARDING, result.action)
        self.assertEqual(['user1+inbox@email.com'], msg.forwarded_to())

    async def test_all_users(self):
        msg = FakeMessage('anyone@domain.com')
        await handle_inbound_message(
            msg, self.env(USERS='*', DESTINATION='@email.com'))
        self.assertEqual([('anyone@email.com', PASS)], msg.forwards)

    async def test_failover_group_recoverable(self):
        msg = FakeMessage('user1@domain.com')
        msg.expect_forward('user1a@email.com', TRANSIENT)
        result = await handle_inbound_message(
            msg, self.env(USERS='user1',
                          DESTINATION='user1a@email.com:user1b@email.com'))
        self.assertEqual(['user1b@email.com'], result.destinations)
        self.assertEqual(['user1a@email.com', 'user1b@email.com'],
                         msg.forwarded_to())
        self.assertEqual([], msg.rejects)

    async def test_independent_groups_recoverable(self):
        msg = FakeMessage('user1@domain.com')
        msg.expect_forward('user1a@email.com', TRANSIENT)
        with self.assertRaises(RecoverableForwardError):
            await handle_inbound_message(
                msg, self.env(USERS='user1',
                              DESTINATION='user1a@email.com, user1b@email.com'))
        self.assertEqual(['user1a@email.com', 'user1b@email.com'],
                         msg.forwarded_to())
        self.assertEqual([], msg.rejects)

    async def test_independent_groups_both_recoverable(self):
        msg = FakeMessage('user1@domain.com')
        msg.expect_forward('user1a@email.com', TRANSIENT)
        msg.expect_forward('user1b@email.com', TRANSIENT)
        with self.assertRaises(RecoverableForwardError):
            await handle_inbound_message(
                msg, self.env(USERS='user1',
                              DESTINATION='user1a@email.com, user1b@email.com'))
        self.assertEqual([], msg.rejects)

    async def test_defaults_reject(self):
        for to in ['user1@domain.com', 'user1+tag@domain.com', 'x@y.com']:
            msg = FakeMessage(to)
            result = await handle_inbound_message(msg, {})
            self.assertEqual(DIRECT_REJECTING, result.action)
            local_part = to.split('@')[0]
            self.assertEqual([local_part + ': Invalid recipient'], msg.rejects)
            self.assertEqual([], msg.forwards)

    async def test_reject_reason(self):
        msg = FakeMessage('user2@domain.com')
        result = await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='user@email.com',
                          REJECT_TREATMENT='Invalid recipient'))
        self.assertEqual('Invalid recipient', result.reject_reason)
        self.assertEqual(['Invalid recipient'], msg.rejects)
        self.assertEqual([], msg.forwards)

    async def test_disallowed_subaddress(self):
        store = DictKvStore({'user1': 'dest@email.com;: Custom reject reason',
                             'user1+': 'goodtag'})
        msg = FakeMessage('user1+badtag@domain.com')
        result = await handle_inbound_message(msg, self.env(), store)
        self.assertEqual(DIRECT_REJECTING, result.action)
        self.assertEqual(['user1+badtag: Custom reject reason'], msg.rejects)
        self.assertEqual([], msg.forwards)

        msg = FakeMessage('user1+goodtag@domain.com')
        await handle_inbound_message(msg, self.env(), store)
        self.assertEqual([('dest@email.com', PASS)], msg.forwards)

    async def test_stored_user_not_in_users(self):
        store = DictKvStore({'user3': ''})
        msg = FakeMessage('user3@domain.com')
        await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='global@email.com'), store)
        self.assertEqual([('global@email.com', PASS)], msg.forwards)

    async def test_stored_empty_subaddresses(self):
        store = DictKvStore({'user1+': ''})
        msg = FakeMessage('user1+suba@domain.com')
        await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='user1@email.com',
                          REJECT_TREATMENT='No such user'), store)
        self.assertEqual(['No such user'], msg.rejects)
        self.assertEqual([], msg.forwards)

    async def test_required_subaddress(self):
        env = self.env(USERS='user1', DESTINATION='user1@email.com',
                       SUBADDRESSES='+*')
        msg = FakeMessage('user1@domain.com')
        await handle_inbound_message(msg, env)
        self.assertEqual(['user1: Invalid recipient'], msg.rejects)

        msg = FakeMessage('user1+anything@domain.com')
        await handle_inbound_message(msg, env)
        self.assertEqual(['user1@email.com'], msg.forwarded_to())

        env['SUBADDRESSES'] = '+'
        for to in ['user1@domain.com', 'user1+anything@domain.com']:
            msg = FakeMessage(to)
            await handle_inbound_message(msg, env)
            self.assertEqual(1, len(msg.rejects))
            self.assertEqual([], msg.forwards)

    async def test_reject_forward(self):
        msg = FakeMessage('user2@domain.com')
        result = await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='user@email.com',
                          REJECT_TREATMENT='+spam@email.com, other@email.com'))
        self.assertEqual(REJECT_FORWARDING, result.action)
        self.assertEqual([('user2+spam@email.com', FAIL),
                          ('other@email.com', FAIL)], msg.forwards)
        self.assertEqual([], msg.rejects)

    async def test_accept_failure_reject_forwards(self):
        msg = FakeMessage('user1@domain.com')
        msg.expect_forward('a@email.com', PERMANENT)
        msg.expect_forward('b@email.com', PERMANENT)
        store = DictKvStore({'user1': 'a@email.com, b@email.com;spam@email.com'})
        result = await handle_inbound_message(msg, self.env(), store)
        self.assertEqual(REJECT_FORWARDING, result.action)
        self.assertEqual([('a@email.com', PASS), ('b@email.com', PASS),
                          ('spam@email.com', FAIL)], msg.forwards)

    async def test_accept_single_unrecoverable_reject_forwards(self):
        msg = FakeMessage('user1@domain.com')
        msg.expect_forward('user@email.com', PERMANENT)
        result = await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='user@email.com',
                          REJECT_TREATMENT='+spam@email.com'))
        self.assertEqual(REJECT_FORWARDING, result.action)
        self.assertEqual([('user@email.com', PASS),
                          ('user1+spam@email.com', FAIL)], msg.forwards)
        self.assertEqual([], msg.rejects)

    async def test_accept_single_unrecoverable_rejects(self):
        msg = FakeMessage('user1@domain.com')
        msg.expect_forward('user@email.com', PERMANENT)
        result = await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='user@email.com'))
        self.assertEqual(DIRECT_REJECTING, result.action)
        self.assertEqual(['user@email.com'], msg.forwarded_to())
        self.assertEqual(['user1: Invalid recipient'], msg.rejects)

    async def test_accept_single_recoverable_raises(self):
        msg = FakeMessage('user1@domain.com')
        err = DeliveryError(TRANSIENT)
        msg.expect_forward('user@email.com', err)
        with self.assertRaises(DeliveryError) as ctx:
            await handle_inbound_message(
                msg, self.env(USERS='user1', DESTINATION='user@email.com'))
        self.assertIs(err, ctx.exception)
        self.assertEqual([], msg.rejects)

    async def test_reject_forward_single_unrecoverable(self):
        msg = FakeMessage('user2@domain.com')
        msg.expect_forward('user2+spam@email.com', PERMANENT)
        result = await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='user@email.com',
                          REJECT_TREATMENT='+spam@email.com'))
        self.assertEqual(DIRECT_REJECTING, result.action)
        self.assertEqual([('user2+spam@email.com', FAIL)], msg.forwards)
        # every layer is an address: the built-in reason
        self.assertEqual(['user2: Invalid recipient'], msg.rejects)

    async def test_reject_forward_single_recoverable_raises(self):
        msg = FakeMessage('user2@domain.com')
        msg.expect_forward('user2+spam@email.com', TRANSIENT)
        with self.assertRaises(DeliveryError):
            await handle_inbound_message(
                msg, self.env(USERS='user1',
                              REJECT_TREATMENT='+spam@email.com'))
        self.assertEqual([], msg.rejects)

    async def test_reject_forward_failure_falls_through(self):
        # stored reject treatment is an address so the environment's
        # reason is used
        store = DictKvStore(
            {'@REJECT_TREATMENT': 'spam1@email.com, spam2@email.com'})
        msg = FakeMessage('user2@domain.com')
        msg.expect_forward('spam1@email.com', PERMANENT)
        msg.expect_forward('spam2@email.com', PERMANENT)
        result = await handle_inbound_message(
            msg, self.env(USERS='user1', REJECT_TREATMENT='No such user'),
            store)
        self.assertEqual(DIRECT_REJECTING, result.action)
        self.assertEqual(['spam1@email.com', 'spam2@email.com'],
                         msg.forwarded_to())
        self.assertEqual(['No such user'], msg.rejects)

    async def test_reject_destination_unverified(self):
        msg = FakeMessage('user2@domain.com')
        msg.expect_forward('reject@email.com', UNVERIFIED)
        result = await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='user1@email.com',
                          REJECT_TREATMENT='reject@email.com'))
        self.assertEqual(DIRECT_REJECTING, result.action)
        self.assertEqual([('reject@email.com', FAIL)], msg.forwards)
        # every layer is an address: the built-in reason
        self.assertEqual(['user2: Invalid recipient'], msg.rejects)

    async def test_accept_unverified(self):
        msg = FakeMessage('user1@domain.com')
        msg.expect_forward('user1a@email.com', UNVERIFIED)
        msg.expect_forward('user1b@email.com', UNVERIFIED)
        await handle_inbound_message(
            msg, self.env(USERS='user1',
                          DESTINATION='user1a@email.com, user1b@email.com',
                          REJECT_TREATMENT='Invalid recipient'))
        self.assertEqual(['user1a@email.com', 'user1b@email.com'],
                         msg.forwarded_to())
        self.assertEqual(['Invalid recipient'], msg.rejects)

    async def test_accept_one_unverified(self):
        msg = FakeMessage('user1@domain.com')
        msg.expect_forward('user1a@email.com', UNVERIFIED)
        result = await handle_inbound_message(
            msg, self.env(USERS='user1',
                          DESTINATION='user1a@email.com, user1b@email.com'))
        self.assertEqual(['user1b@email.com'], result.destinations)
        self.assertEqual([], msg.rejects)

    async def test_invalid_and_duplicate_destinations(self):
        msg = FakeMessage('user1@domain.com')
        result = await handle_inbound_message(
            msg, self.env(
                USERS='user1',
                DESTINATION='user1a, user1b@email.com, user1b@email.com, '
                '+c@email.com'))
        self.assertEqual(['user1b@email.com', 'user1+c@email.com'],
                         result.destinations)
        self.assertEqual(['user1b@email.com', 'user1+c@email.com'],
                         msg.forwarded_to())

    async def test_prepend_local_part(self):
        store = DictKvStore({
            '@USERS': 'user1',
            '@SUBADDRESSES': 'subA',
            '@DESTINATION': 'user1@email.com',
            '@REJECT_TREATMENT': ' : No such recipient ',
            'user1': 'user1@email.com;  ',
            'user2': 'user2@email.com;   : Invalid recipient    '})
        msg = FakeMessage('user1+subB@domain.com')
        await handle_inbound_message(msg, self.env(), store)
        self.assertEqual(['user1+subB: No such recipient'], msg.rejects)

        msg = FakeMessage('user2+subB@domain.com')
        await handle_inbound_message(msg, self.env(), store)
        self.assertEqual(['user2+subB: Invalid recipient'], msg.rejects)
        self.assertEqual([], msg.forwards)

    async def test_stored_reason_only(self):
        store = DictKvStore({'user2': ' ; No such user  '})
        msg = FakeMessage('user2+x@domain.com')
        await handle_inbound_message(
            msg, self.env(DESTINATION='global@email.com', SUBADDRESSES='suba'),
            store)
        self.assertEqual(['No such user'], msg.rejects)

        msg = FakeMessage('user2@domain.com')
        await handle_inbound_message(
            msg, self.env(DESTINATION='global@email.com', SUBADDRESSES='suba'),
            store)
        self.assertEqual(['global@email.com'], msg.forwarded_to())

    async def test_stored_format(self):
        store = DictKvStore({'@FORMAT_LOCAL_PART_SEPARATOR': '--',
                             '@DESTINATION': '--inbox@email.com',
                             '@USERS': 'user1'})
        msg = FakeMessage('user1--tag@domain.com')
        await handle_inbound_message(
            msg, self.env(USE_STORED_FORMAT_CONFIGURATION='true'), store)
        self.assertEqual(['user1--inbox@email.com'], msg.forwarded_to())

        # not loaded: 'user1--tag' is the user
        msg = FakeMessage('user1--tag@domain.com')
        await handle_inbound_message(msg, self.env(), store)
        self.assertEqual([], msg.forwards)
        self.assertEqual(['user1--tag: Invalid recipient'], msg.rejects)

    async def test_stored_header(self):
        store = DictKvStore({'@CUSTOM_HEADER': 'X-Stored-Forwarding',
                             '@CUSTOM_HEADER_PASS': 'ok'})
        msg = FakeMessage('user1@domain.com')
        await handle_inbound_message(
            msg, self.env(USERS='user1', DESTINATION='user@email.com',
                          USE_STORED_HEADER_CONFIGURATION='true'), store)
        self.assertEqual([('user@email.com', {'X-Stored-Forwarding': 'ok'})],
                         msg.forwards)

    async def test_configuration_error(self):
        msg = FakeMessage('user1@domain.com')
        with self.assertRaises(ConfigurationError):
            await handle_inbound_message(
                msg, self.env(USERS='user1', DESTINATION='user@email.com',
                              CUSTOM_HEADER='Not-Custom'))
        self.assertEqual([], msg.forwards)
        self.assertEqual([], msg.rejects)

if __name__ == '__main__':
    unittest.main()
