# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
from typing import Dict, List, Optional
import argparse
import asyncio
import logging
import sys

from tagroute.delivery_error import DeliveryError
from tagroute.message import InboundMessage
from tagroute.service import Service

# Runs the routing flow for one recipient against the config without
# delivering anything, to check a configuration change.
#
# python -m tagroute.route_main config.yaml --to alice+news@example.com \
#   --fail alice@example.net='destination address not verified'

class DryRunMessage(InboundMessage):
    failures : Dict[str, str]
    forwards : List[str]
    reject_reason : Optional[str] = None

    def __init__(self, to : str, mail_from : str,
                 failures : Dict[str, str]):
        self.to = to
        self.mail_from = mail_from
        self.headers = {}
        self.failures = failures
        self.forwards = []

    async def forward(self, rcpt_to : str, headers : Dict[str, str]):
        if (err := self.failures.get(rcpt_to, None)) is not None:
            logging.info('DryRunMessage.forward %s %s failed %s',
                         rcpt_to, headers, err)
            raise DeliveryError(err)
        logging.info('DryRunMessage.forward %s %s', rcpt_to, headers)
        self.forwards.append(rcpt_to)

    def set_reject(self, reason : str):
        self.reject_reason = reason


def parse_failures(fail_args : Optional[List[str]]) -> Dict[str, str]:
    failures = {}
    for f in fail_args or []:
        addr, sep, err = f.partition('=')
        if not sep:
            raise ValueError('--fail expects ADDR=MESSAGE: %s' % f)
        failures[addr] = err
    return failures

def main(argv : List[str]) -> int:
    parser = argparse.ArgumentParser()
    parser.add_argument('config')
    parser.add_argument('--to', required=True)
    parser.add_argument('--mail_from', '--from', default='nobody@example.com')
    parser.add_argument('--fail', action='append',
                        help='ADDR=MESSAGE: forwards to ADDR raise MESSAGE')
    args = parser.parse_args(argv[1:])

    try:
        failures = parse_failures(args.fail)
    except ValueError as e:
        parser.error(str(e))

    service = Service()
    service.load(args.config)
    service.configure()

    message = DryRunMessage(args.to, args.mail_from, failures)
    try:
        result = asyncio.run(service.handle_inbound_message(message))
    except Exception as e:
        logging.info('route_main exception', exc_info=True)
        print('temporary failure (sender retries): %s' % e)
        return 1
    print(result)
    return 0

if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s %(filename)s:%(lineno)d %(message)s')
    sys.exit(main(sys.argv))
