""" version information for pakerun """

__title__ = "pakerun"
__description__ = "a device provisioning test run orchestrator with traffic capture"
__url__ = "https://github.com/wlan-pi/pakerun"
__author__ = "Josh Schmelzle"
__author_email__ = "josh@joshschmelzle.com"
__version__ = "0.1.0"
__status__ = "alpha"
__license__ = "BSD-3-Clause"
