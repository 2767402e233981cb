import dataclasses
import unittest

from typefun.config import DEFAULT_CONFIG, ReductionConfig


class TestReductionConfig(unittest.TestCase):
    def test_defaults(self) -> None:
        self.assertEqual(1_000_000, DEFAULT_CONFIG.maximum_steps)
        self.assertEqual(5_000, DEFAULT_CONFIG.cartesian_product_limit)
        self.assertEqual(-1, DEFAULT_CONFIG.guesser_depth)
        self.assertFalse(DEFAULT_CONFIG.log_type_functions)

    def test_from_mapping(self) -> None:
        config = ReductionConfig.from_mapping(
            {'maximum_steps': 10, 'log_type_functions': True}
        )
        self.assertEqual(10, config.maximum_steps)
        self.assertTrue(config.log_type_functions)

    def test_from_mapping_rejects_unknown_options(self) -> None:
        with self.assertRaisesRegex(ValueError, 'max_steps'):
            ReductionConfig.from_mapping({'max_steps': 10})

    def test_limits_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            ReductionConfig(maximum_steps=0)
        with self.assertRaises(ValueError):
            DEFAULT_CONFIG.replace(cartesian_product_limit=-3)

    def test_replace_leaves_original_alone(self) -> None:
        changed = DEFAULT_CONFIG.replace(guesser_depth=2)
        self.assertEqual(2, changed.guesser_depth)
        self.assertEqual(-1, DEFAULT_CONFIG.guesser_depth)

    def test_frozen(self) -> None:
        with self.assertRaises(dataclasses.FrozenInstanceError):
            DEFAULT_CONFIG.maximum_steps = 1  # type: ignore[misc]
