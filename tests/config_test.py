import shutil
import tempfile
import unittest
from pathlib import Path

from common.config import load_settings, apply_override, validate_settings, SettingsError, DEFAULT_SETTINGS


class TestConfig(unittest.TestCase):

    def setUp(self) -> None:
        self.base_path = Path(tempfile.mkdtemp())

    def tearDown(self) -> None:
        shutil.rmtree(self.base_path, ignore_errors=True)

    def write_config(self, text):
        path = self.base_path / 'settings.yaml'
        path.write_text(text, encoding='utf-8')
        return path

    def test_repository_config_is_valid(self):
        settings = load_settings()
        self.assertEqual(settings['compute']['name'], 'cpu-cluster')
        self.assertEqual(settings['batch_inference']['pipeline_version'], '1.0')
        self.assertEqual(settings['batch_inference']['polling_interval'], 5)

    def test_file_is_merged_over_defaults(self):
        path = self.write_config('compute:\n  name: gpu-cluster\n  max_nodes: 4\n')
        settings = load_settings(path)
        self.assertEqual(settings['compute']['name'], 'gpu-cluster')
        self.assertEqual(settings['compute']['max_nodes'], 4)
        self.assertEqual(settings['compute']['vm_size'], DEFAULT_SETTINGS['compute']['vm_size'])
        self.assertEqual(settings['data']['label_column'], 'label')

    def test_overrides(self):
        path = self.write_config('{}\n')
        settings = load_settings(path, overrides=['training.allow_reuse=false', 'compute.max_nodes=3',
                                                  'data.id_column=customer_id', 'data.datastore=null'])
        self.assertIs(settings['training']['allow_reuse'], False)
        self.assertEqual(settings['compute']['max_nodes'], 3)
        self.assertEqual(settings['data']['id_column'], 'customer_id')
        self.assertIsNone(settings['data']['datastore'])

    def test_bad_override(self):
        with self.assertRaises(SettingsError):
            apply_override({}, 'compute.max_nodes')
        with self.assertRaises(SettingsError):
            apply_override({}, '=3')

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_settings(self.base_path / 'missing.yaml')

    def test_not_a_mapping(self):
        path = self.write_config('- a\n- b\n')
        with self.assertRaises(SettingsError):
            load_settings(path)

    def test_validation(self):
        invalid = [
            ['compute.min_nodes=2', 'compute.max_nodes=1'],
            ['compute.min_nodes=-1'],
            ['batch_inference.polling_interval=0'],
            ['training.test_ratio=1'],
            ['data.label_column='],
            ['compute.name=""'],
        ]
        path = self.write_config('{}\n')
        for overrides in invalid:
            with self.subTest(overrides=overrides):
                with self.assertRaises(SettingsError):
                    load_settings(path, overrides=overrides)

    def test_settings_error_is_value_error(self):
        self.assertTrue(issubclass(SettingsError, ValueError))
        with self.assertRaises(ValueError):
            validate_settings({'compute': {'name': ''}})

    def test_wrong_types(self):
        invalid = [
            ['compute.min_nodes=abc'],
            ['compute.max_nodes=1.5'],
            ['training.seed=true'],
            ['training.test_ratio=small'],
            ['batch_inference.polling_interval=[5]'],
            ['environment.pip_packages=pandas'],
            ['compute.min_nodes=[oops'],
        ]
        path = self.write_config('{}\n')
        for overrides in invalid:
            with self.subTest(overrides=overrides):
                with self.assertRaises(SettingsError):
                    load_settings(path, overrides=overrides)

    def test_section_is_not_a_mapping(self):
        for text in ('compute: null\n', 'training: 3\n', 'data:\n  - a\n'):
            with self.subTest(text=text):
                with self.assertRaises(SettingsError):
                    load_settings(self.write_config(text))

    def test_invalid_yaml(self):
        path = self.write_config('compute: [cpu\n')
        with self.assertRaises(SettingsError):
            load_settings(path)
