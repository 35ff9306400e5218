# Copyright The Koukan Authors
# SPDX-License-Identifier: Apache-2.0
import logging
import sys

from tagroute.service import Service

def main(argv):
    if len(argv) != 2:
        print('usage: %s config.yaml' % argv[0], file=sys.stderr)
        return 2
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s [%(process)d] [%(thread)d] '
        '%(filename)s:%(lineno)d %(message)s')

    service = Service()
    service.main(argv[1])
    return 0

if __name__ == '__main__':
    sys.exit(main(sys.argv))
