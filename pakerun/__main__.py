# -*- coding: utf-8 -*-
#
# pakerun : a device provisioning test run orchestrator
# Copyright : (c) 2020-2021 Josh Schmelzle
# License : BSD-3-Clause
# Maintainer : josh@joshschmelzle.com

"""
pakerun
~~~~~~~

one provisioning test run against a device, with traffic capture
"""

import os
import platform
import sys


def main():
    """ Set up args and start the run manager """
    from . import helpers, manager

    parser = helpers.setup_parser()
    args = parser.parse_args()

    return manager.start(args)


def init():
    """ Handle main init """
    # hard set no support for non linux platforms
    if "linux" not in sys.platform:
        sys.exit(
            "{0} only works on Linux... exiting...".format(os.path.basename(__file__))
        )

    # hard set no support for python < v3.7
    if sys.version_info < (3, 7):
        sys.exit(
            "{0} requires Python version 3.7 or higher...\nyou are trying to run with Python version {1}...\nexiting...".format(
                os.path.basename(__file__), platform.python_version()
            )
        )

    if __name__ == "__main__":
        sys.exit(main())


init()
