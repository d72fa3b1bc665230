import os
import math
import sys
import time
import argparse
from pathlib import Path

import joblib
from azureml.core import Run
from sklearn.linear_model import LogisticRegression
from sklearn.model_selection import train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn import metrics

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from common.utils import read_csv_input, build_features, categorical_columns, normalize_column_name, write_json

MODEL_FILE_NAME = 'model.pkl'
FEATURE_COLUMNS_FILE_NAME = 'feature_columns.json'
MODEL_INFO_FILE_NAME = 'model_info.json'
METRICS_FILE_NAME = 'metrics.json'


def _can_hold_out(num_rows, test_ratio):
    if test_ratio <= 0:
        return False
    num_test = int(num_rows * test_ratio)
    return num_test >= 2 and num_rows - num_test >= 2


def split_data(features, labels, test_ratio, seed):
    """Hold out ``test_ratio`` of the rows, stratified on the label when every class allows it.

    Returns ``None`` for the validation part when no split keeps two classes in the training part.
    """
    if not _can_hold_out(features.shape[0], test_ratio):
        print('not enough data to hold out a validation set, training on all data')
        return features, None, labels, None
    # train_test_split rounds the held out part up
    num_test = math.ceil(features.shape[0] * test_ratio)
    num_classes = labels.nunique()
    stratify = None
    if labels.value_counts().min() >= 2 and num_classes <= num_test <= features.shape[0] - num_classes:
        stratify = labels
    x_train, x_valid, y_train, y_valid = train_test_split(features, labels, test_size=test_ratio,
                                                          random_state=seed, stratify=stratify)
    if y_train.nunique() < 2:
        print('the held out rows take a whole class, training on all data')
        return features, None, labels, None
    return x_train, x_valid, y_train, y_valid


def log_metrics(result):
    # for metrics
    run = Run.get_context()
    for name, value in result.items():
        if value is not None:
            run.log(name=name, value=value)


def train(input, output, label_column='label', id_column=None, test_ratio=0.2, seed=0, max_iter=1000,
          regularization=1.0):
    # hardcode: model.pkl, feature_columns.json, model_info.json and metrics.json
    label_column = normalize_column_name(label_column)
    id_column = normalize_column_name(id_column) if id_column else None
    print('============================================')
    print(f"input: '{input}', output: '{output}'")
    df = read_csv_input(input)
    if label_column not in df.columns:
        raise ValueError(f"label column '{label_column}' not found in {list(df.columns)}")
    labels = df[label_column]
    if labels.nunique() < 2:
        raise ValueError(f"label column '{label_column}' needs at least two classes, got {labels.unique().tolist()}")
    categorical = categorical_columns(df, label_column, id_column)
    features = build_features(df, label_column=label_column, id_column=id_column)
    print('num of data:', features.shape[0])
    print('num of features:', features.shape[1])

    x_train, x_valid, y_train, y_valid = split_data(features, labels, test_ratio, seed)

    model = Pipeline([
        ('scaler', StandardScaler()),
        ('classifier', LogisticRegression(C=regularization, max_iter=max_iter, random_state=seed)),
    ])
    start = time.time()
    model.fit(x_train, y_train)
    end = time.time()
    print('\nduration of training process: %.2f sec' % (end - start))

    result = {
        'train_accuracy': float(metrics.accuracy_score(y_train, model.predict(x_train))),
        'validation_accuracy': None,
        'num_rows': int(features.shape[0]),
        'num_features': int(features.shape[1]),
    }
    if x_valid is not None:
        result['validation_accuracy'] = float(metrics.accuracy_score(y_valid, model.predict(x_valid)))
    print('train accuracy:', result['train_accuracy'])
    print('validation accuracy:', result['validation_accuracy'])

    os.makedirs(output, exist_ok=True)
    joblib.dump(model, os.path.join(output, MODEL_FILE_NAME))
    write_json(list(features.columns), os.path.join(output, FEATURE_COLUMNS_FILE_NAME))
    write_json({'label_column': label_column, 'id_column': id_column, 'categorical_columns': categorical,
                'classes': [str(c) for c in model.classes_]},
               os.path.join(output, MODEL_INFO_FILE_NAME))
    write_json(result, os.path.join(output, METRICS_FILE_NAME))
    log_metrics(result)
    print('============================================')
    return result


def parse_args(args=None):
    parser = argparse.ArgumentParser(description='Model training step')
    parser.add_argument('--input', required=True, help='folder with the processed training data')
    parser.add_argument('--output', required=True, help='folder for the trained model')
    parser.add_argument('--label_column', default='label')
    parser.add_argument('--id_column', default=None)
    parser.add_argument('--test_ratio', type=float, default=0.2)
    parser.add_argument('--seed', type=int, default=0)
    parser.add_argument('--max_iter', type=int, default=1000)
    parser.add_argument('--regularization', type=float, default=1.0)
    return parser.parse_args(args)


if __name__ == '__main__':
    args = parse_args()
    train(**vars(args))
