import os
import sys
import json
import shutil
import tempfile
import unittest
from unittest import mock
from pathlib import Path

import joblib
import numpy as np
import pandas as pd

# The following line adds source directory to path.
sys.path.insert(0, str(Path(__file__).parent.parent))
from train import train, split_data


def make_processed_data(n=40, seed=0):
    rng = np.random.RandomState(seed)
    x1 = rng.normal(size=n)
    x2 = rng.normal(size=n)
    return pd.DataFrame({
        'customer_id': range(n),
        'x1': x1,
        'x2': x2,
        'segment': ['a' if i % 2 else 'b' for i in range(n)],
        'label': (x1 + x2 > 0).astype(int),
    })


class TestTrain(unittest.TestCase):

    def setUp(self) -> None:
        self.base_path = Path(tempfile.mkdtemp())
        self.input_dir = self.base_path / 'processed_data'
        os.makedirs(self.input_dir)
        make_processed_data().to_csv(self.input_dir / 'processed.csv', index=False)

    def tearDown(self) -> None:
        shutil.rmtree(self.base_path, ignore_errors=True)

    def prepare_inputs(self) -> dict:
        return {'input': str(self.input_dir)}

    def prepare_outputs(self) -> dict:
        return {'output': str(self.base_path / 'model')}

    def prepare_parameters(self) -> dict:
        return {'label_column': 'label',
                'id_column': 'customer_id',
                'test_ratio': 0.25,
                'seed': 0,
                'max_iter': 200,
                'regularization': 1.0}

    def prepare_arguments(self) -> dict:
        result = {}
        result.update(self.prepare_inputs())
        result.update(self.prepare_outputs())
        result.update(self.prepare_parameters())
        return result

    def test_module_func(self):
        result = train(**self.prepare_arguments())
        model_dir = self.prepare_outputs()['output']
        for name in ('model.pkl', 'feature_columns.json', 'model_info.json', 'metrics.json'):
            self.assertTrue(os.path.exists(os.path.join(model_dir, name)), name)

        with open(os.path.join(model_dir, 'feature_columns.json')) as f:
            feature_columns = json.load(f)
        # id and label are not features, the categorical column is one-hot encoded
        self.assertEqual(feature_columns, ['x1', 'x2', 'segment_a', 'segment_b'])
        with open(os.path.join(model_dir, 'model_info.json')) as f:
            model_info = json.load(f)
        self.assertEqual(model_info['label_column'], 'label')
        self.assertEqual(model_info['id_column'], 'customer_id')
        self.assertEqual(model_info['classes'], ['0', '1'])
        self.assertEqual(model_info['categorical_columns'], ['segment'])

        self.assertEqual(result['num_rows'], 40)
        self.assertEqual(result['num_features'], 4)
        self.assertIsNotNone(result['validation_accuracy'])
        self.assertGreater(result['train_accuracy'], 0.8)
        model = joblib.load(os.path.join(model_dir, 'model.pkl'))
        self.assertTrue(hasattr(model, 'predict_proba'))

    def test_no_validation_set_for_tiny_data(self):
        df = make_processed_data(n=5)
        df['label'] = [0, 1, 0, 1, 0]
        df.to_csv(self.input_dir / 'processed.csv', index=False)
        result = train(**self.prepare_arguments())
        self.assertIsNone(result['validation_accuracy'])

    def test_zero_test_ratio(self):
        arguments = self.prepare_arguments()
        arguments['test_ratio'] = 0
        result = train(**arguments)
        self.assertIsNone(result['validation_accuracy'])

    def test_single_class(self):
        df = make_processed_data()
        df['label'] = 1
        df.to_csv(self.input_dir / 'processed.csv', index=False)
        with self.assertRaises(ValueError):
            train(**self.prepare_arguments())

    def test_missing_input(self):
        shutil.rmtree(self.input_dir)
        with self.assertRaises(FileNotFoundError):
            train(**self.prepare_arguments())

    def test_metrics_are_logged_to_the_run(self):
        with mock.patch('train.Run') as run_class:
            result = train(**self.prepare_arguments())
        run = run_class.get_context.return_value
        logged = {c.kwargs['name']: c.kwargs['value'] for c in run.log.call_args_list}
        self.assertEqual(logged, result)

    def test_minority_class_stays_in_training_part(self):
        df = make_processed_data(n=10)
        df['label'] = [0] * 8 + [1] * 2
        df.to_csv(self.input_dir / 'processed.csv', index=False)
        arguments = self.prepare_arguments()
        arguments['test_ratio'] = 0.2
        for seed in list(range(20)) + [121]:
            with self.subTest(seed=seed):
                arguments['seed'] = seed
                result = train(**arguments)
                self.assertIsInstance(result['validation_accuracy'], float)

    def test_split_keeps_two_classes(self):
        features = pd.DataFrame({'x': range(10)})
        for labels in ([0] * 8 + [1] * 2, [0] * 9 + [1]):
            for seed in range(50):
                with self.subTest(labels=labels, seed=seed):
                    x_train, x_valid, y_train, y_valid = split_data(features, pd.Series(labels), 0.2, seed)
                    self.assertEqual(y_train.nunique(), 2)
                    if x_valid is None:
                        self.assertEqual(len(x_train), 10)
