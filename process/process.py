import os
import sys
import argparse
from pathlib import Path

import pandas as pd

# common/ sits next to this module's folder in the step snapshot
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from common.utils import read_csv_input, normalize_columns, normalize_column_name

PROCESS_MODES = ('train', 'inference')
OUTPUT_FILE_NAME = 'processed.csv'


def process(input, output, process_mode='train', label_column='label', id_column=None):
    """Clean the raw csv data for the training or the inference pipeline."""
    if process_mode not in PROCESS_MODES:
        raise ValueError(f"Invalid process_mode '{process_mode}', expected one of {PROCESS_MODES}")
    label_column = normalize_column_name(label_column)
    id_column = normalize_column_name(id_column) if id_column else None

    print('============================================')
    print(f"input: '{input}', output: '{output}', process_mode: '{process_mode}'")
    df = normalize_columns(read_csv_input(input))
    num_raw = df.shape[0]
    df = df.drop_duplicates().reset_index(drop=True)
    print('num of raw data:', num_raw)
    print('num of duplicated data:', num_raw - df.shape[0])

    if process_mode == 'train':
        if label_column not in df.columns:
            raise ValueError(f"label column '{label_column}' not found in {list(df.columns)}")
        num_before = df.shape[0]
        df = df[df[label_column].notna()].reset_index(drop=True)
        print('num of data without label:', num_before - df.shape[0])
    elif label_column in df.columns:
        df = df.drop(columns=[label_column])

    for column in df.columns:
        if column in (label_column, id_column):
            continue
        if pd.api.types.is_numeric_dtype(df[column]):
            median = df[column].median()
            df[column] = df[column].fillna(0 if pd.isna(median) else median)
        else:
            df[column] = df[column].fillna('missing')

    os.makedirs(output, exist_ok=True)
    path = os.path.join(output, OUTPUT_FILE_NAME)
    df.to_csv(path, index=False)
    print('num of processed data:', df.shape[0])
    print(f'processed data is written to {path}')
    print('============================================')
    return df


def parse_args(args=None):
    parser = argparse.ArgumentParser(description='Data preparation step')
    parser.add_argument('--input', required=True, help='raw csv file or folder of csv files')
    parser.add_argument('--output', required=True, help='folder for processed.csv')
    parser.add_argument('--process_mode', choices=PROCESS_MODES, default='train')
    parser.add_argument('--label_column', default='label')
    parser.add_argument('--id_column', default=None)
    return parser.parse_args(args)


if __name__ == '__main__':
    args = parse_args()
    process(**vars(args))
