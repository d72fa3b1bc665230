import os
import sys
import argparse
from pathlib import Path

import joblib

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from common.utils import read_csv_input, build_features, normalize_column_name, read_json

MODEL_FILE_NAME = 'model.pkl'
FEATURE_COLUMNS_FILE_NAME = 'feature_columns.json'
MODEL_INFO_FILE_NAME = 'model_info.json'
OUTPUT_FILE_NAME = 'scored.csv'


def load_model(model_dir):
    for name in (MODEL_FILE_NAME, FEATURE_COLUMNS_FILE_NAME, MODEL_INFO_FILE_NAME):
        path = os.path.join(model_dir, name)
        if not os.path.exists(path):
            raise FileNotFoundError(path)
    model = joblib.load(os.path.join(model_dir, MODEL_FILE_NAME))
    feature_columns = read_json(os.path.join(model_dir, FEATURE_COLUMNS_FILE_NAME))
    model_info = read_json(os.path.join(model_dir, MODEL_INFO_FILE_NAME))
    return model, feature_columns, model_info


def inference(input, model, output, id_column=None):
    """Score the processed data with the trained model and write scored.csv."""
    print('=====================================================')
    print(f"input: '{Path(input).resolve()}'")
    print(f"model: '{Path(model).resolve()}'")
    trained_model, feature_columns, model_info = load_model(model)
    id_column = normalize_column_name(id_column) if id_column else model_info.get('id_column')
    df = read_csv_input(input)
    features = build_features(df, label_column=model_info['label_column'], id_column=id_column,
                              feature_columns=feature_columns,
                              categorical=model_info.get('categorical_columns'))
    print('num of data to score:', features.shape[0])

    if id_column is not None and id_column in df.columns:
        scored = df[[id_column]].copy()
    else:
        scored = df.copy()
    scored['prediction'] = trained_model.predict(features)
    if hasattr(trained_model, 'predict_proba'):
        scored['probability'] = trained_model.predict_proba(features).max(axis=1)

    os.makedirs(output, exist_ok=True)
    path = os.path.join(output, OUTPUT_FILE_NAME)
    scored.to_csv(path, index=False)
    print(f'scored data is written to {path}')
    print('=====================================================')
    return scored


def parse_args(args=None):
    parser = argparse.ArgumentParser(description='Batch inference step')
    parser.add_argument('--input', required=True, help='folder with the processed data to score')
    parser.add_argument('--model', required=True, help='folder with the trained model')
    parser.add_argument('--output', required=True, help='folder for scored.csv')
    parser.add_argument('--id_column', default=None)
    return parser.parse_args(args)


if __name__ == '__main__':
    args = parse_args()
    inference(**vars(args))
