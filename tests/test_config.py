#!/usr/bin/env python3
"""
Tests for optimizer configuration
"""

import os
import sys
import tempfile
import unittest
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from pipefuse.config import ConfigError, OptimizerConfig  # noqa: E402

CONFIG_DIR = os.path.join(os.path.dirname(__file__), '..', 'config')


class TestConfigYAML(unittest.TestCase):

    def write(self, data):
        f = tempfile.NamedTemporaryFile('w', suffix='.yaml', delete=False)
        with f:
            if isinstance(data, str):
                f.write(data)
            else:
                yaml.safe_dump(data, f)
        self.addCleanup(os.unlink, f.name)
        return f.name

    def test_default_config_file(self):
        """The shipped config enables every pass"""
        path = os.path.join(CONFIG_DIR, 'optimizer.yaml')
        self.assertTrue(os.path.exists(path), "optimizer.yaml should exist")

        with open(path) as f:
            data = yaml.safe_load(f)
        self.assertIn('optimizer', data)

        config = OptimizerConfig.from_yaml(path)
        self.assertEqual(config, OptimizerConfig())

    def test_partial_section(self):
        path = self.write({'optimizer': {'horizontal_fusion': False}})
        config = OptimizerConfig.from_yaml(path)
        self.assertTrue(config.vertical_fusion)
        self.assertFalse(config.horizontal_fusion)
        self.assertTrue(config.validate)

    def test_stage_limit_from_file(self):
        path = self.write({'optimizer': {'max_fused_stages': 16}})
        self.assertEqual(OptimizerConfig.from_yaml(path).max_fused_stages, 16)

    def test_empty_file_gives_defaults(self):
        path = self.write("")
        self.assertEqual(OptimizerConfig.from_yaml(path), OptimizerConfig())

    def test_top_level_must_be_mapping(self):
        path = self.write("- vertical_fusion\n")
        with self.assertRaises(ConfigError):
            OptimizerConfig.from_yaml(path)


class TestConfigDict(unittest.TestCase):

    def test_unknown_option(self):
        with self.assertRaises(ConfigError):
            OptimizerConfig.from_dict({'loop_fusion': True})

    def test_non_boolean_value(self):
        with self.assertRaises(ConfigError):
            OptimizerConfig.from_dict({'validate': 'yes'})

    def test_max_fused_stages(self):
        self.assertEqual(OptimizerConfig().max_fused_stages, 64)
        config = OptimizerConfig.from_dict({'max_fused_stages': 8})
        self.assertEqual(config.max_fused_stages, 8)
        self.assertTrue(config.vertical_fusion)

    def test_invalid_max_fused_stages(self):
        for value in (0, -3, True, "64", 2.5):
            with self.assertRaises(ConfigError):
                OptimizerConfig.from_dict({'max_fused_stages': value})

    def test_section_must_be_mapping(self):
        with self.assertRaises(ConfigError):
            OptimizerConfig.from_dict(['validate'])

    def test_config_error_is_value_error(self):
        self.assertTrue(issubclass(ConfigError, ValueError))

    def test_round_trip(self):
        config = OptimizerConfig(vertical_fusion=False)
        self.assertEqual(OptimizerConfig.from_dict(config.to_dict()), config)


if __name__ == '__main__':
    unittest.main(verbosity=2)
