import os
import re
import json
from glob import glob

import pandas as pd


def read_csv_input(path, **kwargs):
    # a mounted PipelineData/DataReference may be a single file or a folder of csv files
    if os.path.isdir(path):
        files = sorted(glob(os.path.join(path, '*.csv')))
        if len(files) == 0:
            raise FileNotFoundError(f"no csv file found in '{path}'")
        print(f'reading {len(files)} csv file(s) from {path}')
        frames = [pd.read_csv(f, **kwargs) for f in files]
        return pd.concat(frames, ignore_index=True)
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    return pd.read_csv(path, **kwargs)


def normalize_column_name(name):
    return re.sub(r'\s+', '_', str(name).strip().lower())


def normalize_columns(df):
    df = df.copy()
    df.columns = [normalize_column_name(c) for c in df.columns]
    return df


def categorical_columns(df, label_column, id_column=None):
    return [c for c in df.columns
            if c not in (label_column, id_column) and not pd.api.types.is_numeric_dtype(df[c])]


def build_features(df, label_column, id_column=None, feature_columns=None, categorical=None):
    """Turn a prepared frame into a numeric feature matrix.

    The label and id columns are dropped, non-numeric columns are one-hot encoded.
    ``categorical`` names the columns that were one-hot encoded at training time, they are
    encoded as strings even when a later batch happens to hold only numbers.
    When ``feature_columns`` is given (the columns seen at training time) the result is
    reindexed to exactly those columns, unseen categories are dropped and missing ones are 0.
    """
    drop = [c for c in (label_column, id_column) if c is not None and c in df.columns]
    features = df.drop(columns=drop)
    detected = categorical_columns(features, label_column, id_column)
    if categorical is not None:
        detected += [c for c in categorical if c in features.columns and c not in detected]
    for column in detected:
        if pd.api.types.is_numeric_dtype(features[column]):
            features[column] = features[column].astype(str)
    if detected:
        features = pd.get_dummies(features, columns=detected, dtype=float)
    if feature_columns is not None:
        features = features.reindex(columns=list(feature_columns), fill_value=0)
    return features.astype(float)


def write_json(obj, path):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(obj, f, indent=2)


def read_json(path):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)
