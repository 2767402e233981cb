"""A reduction engine for type-level function applications."""

import logging

version = '0.1.0'

logging.getLogger(__name__).addHandler(logging.NullHandler())
