import io
import json
import logging
import unittest

from typefun.logging import JSONFormatter, get_logger


class TestTypeFunLogger(unittest.TestCase):
    def setUp(self) -> None:
        self.stream = io.StringIO()
        self.handler = logging.StreamHandler(self.stream)
        self.handler.setFormatter(JSONFormatter())
        self.raw_logger = logging.getLogger('typefun.tests.logging')
        self.raw_logger.addHandler(self.handler)
        self.raw_logger.propagate = False
        self.addCleanup(self.raw_logger.removeHandler, self.handler)

    def test_formats_with_str_format(self) -> None:
        self.raw_logger.setLevel(logging.DEBUG)
        get_logger('typefun.tests.logging').debug('{} => {}', 'a', 'b')
        record = json.loads(self.stream.getvalue())
        self.assertEqual('a => b', record['message'])
        self.assertEqual('DEBUG', record['level_name'])

    def test_records_the_caller(self) -> None:
        self.raw_logger.setLevel(logging.INFO)
        get_logger('typefun.tests.logging').info('hello')
        record = json.loads(self.stream.getvalue())
        self.assertEqual('test_records_the_caller', record['function_name'])
        self.assertEqual(__name__, record['module'])
        self.assertEqual('test_logging.py', record['file_name'])

    def test_disabled_levels_emit_nothing(self) -> None:
        self.raw_logger.setLevel(logging.WARNING)
        logger = get_logger('typefun.tests.logging')
        self.assertFalse(logger.is_enabled_for(logging.DEBUG))
        logger.debug('not {}', 'shown')
        logger.info('not shown either')
        self.assertEqual('', self.stream.getvalue())

    def test_exception_info(self) -> None:
        self.raw_logger.setLevel(logging.ERROR)
        try:
            raise ValueError('boom')
        except ValueError:
            get_logger('typefun.tests.logging').error(
                'failed: {}', 'x', exc_info=True
            )
        record = json.loads(self.stream.getvalue())
        self.assertEqual('failed: x', record['message'])
        self.assertIn('ValueError: boom\n', record['exception'][-1])
