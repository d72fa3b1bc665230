import copy
import io
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / 'pipeline_config.yaml'

DEFAULT_SETTINGS = {
    'logging': {
        'level': 'INFO',
    },
    'workspace': {
        'config_path': 'config.json',
    },
    'compute': {
        'name': 'cpu-cluster',
        'vm_size': 'STANDARD_D2_V2',
        'min_nodes': 0,
        'max_nodes': 1,
        'idle_seconds_before_scaledown': 1800,
    },
    'environment': {
        'use_docker': True,
        'pip_packages': ['pandas', 'scikit-learn', 'joblib'],
    },
    'data': {
        'datastore': None,
        'training_path': 'raw/training/data.csv',
        'inference_path': 'raw/inference',
        'label_column': 'label',
        'id_column': None,
    },
    'training': {
        'experiment_name': 'training-pipeline',
        'allow_reuse': True,
        'test_ratio': 0.2,
        'seed': 0,
        'max_iter': 1000,
        'regularization': 1.0,
    },
    'batch_inference': {
        'experiment_name': 'batch-inference',
        'pipeline_name': 'batch-inference-pipeline',
        'pipeline_description': 'Data prep followed by batch scoring of new data',
        'pipeline_version': '1.0',
        'allow_reuse': False,
        'model_path': 'models/latest',
        'model_name': None,
        'schedule_name': 'batch-inference-on-new-data',
        'polling_interval': 5,
    },
}

_REQUIRED_STRINGS = (
    ('compute', 'name'),
    ('data', 'training_path'),
    ('data', 'inference_path'),
    ('data', 'label_column'),
)


class SettingsError(ValueError):
    pass


def _yaml():
    return YAML(typ='safe', pure=True)


def _merge(base, update):
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def apply_override(settings, override):
    """Apply one ``section.key=value`` override, the value is parsed as a yaml scalar."""
    if '=' not in override:
        raise SettingsError(f"override '{override}' is not of the form key=value")
    dotted, raw = override.split('=', 1)
    keys = [k for k in dotted.strip().split('.') if k]
    if not keys:
        raise SettingsError(f"override '{override}' has an empty key")
    try:
        value = _yaml().load(io.StringIO(raw)) if raw.strip() else None
    except YAMLError as e:
        raise SettingsError(f"override '{override}' has an invalid value: {e}") from e
    node = settings
    for key in keys[:-1]:
        if not isinstance(node.get(key), dict):
            node[key] = {}
        node = node[key]
    node[keys[-1]] = value
    return settings


_NUMBERS = (
    ('compute', 'min_nodes', int),
    ('compute', 'max_nodes', int),
    ('compute', 'idle_seconds_before_scaledown', int),
    ('training', 'test_ratio', (int, float)),
    ('training', 'seed', int),
    ('training', 'max_iter', int),
    ('training', 'regularization', (int, float)),
    ('batch_inference', 'polling_interval', int),
)


def _check_number(settings, section, key, types):
    value = settings[section].get(key)
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, types):
        raise SettingsError(f"'{section}.{key}' must be a number, got {value!r}")
    return value


def validate_settings(settings):
    if not isinstance(settings, dict):
        raise SettingsError('settings must be a mapping')
    for section in DEFAULT_SETTINGS:
        if not isinstance(settings.get(section), dict):
            raise SettingsError(f"'{section}' must be a mapping, got {settings.get(section)!r}")

    for section, key in _REQUIRED_STRINGS:
        value = settings[section].get(key)
        if not isinstance(value, str) or not value.strip():
            raise SettingsError(f"'{section}.{key}' must be a non-empty string")
    for section, key, types in _NUMBERS:
        _check_number(settings, section, key, types)
    pip_packages = settings['environment'].get('pip_packages')
    if not isinstance(pip_packages, list) or not all(isinstance(p, str) for p in pip_packages):
        raise SettingsError('environment.pip_packages must be a list of package names')

    compute = settings['compute']
    if compute['min_nodes'] < 0 or compute['max_nodes'] < 0:
        raise SettingsError('compute node counts must not be negative')
    if compute['min_nodes'] > compute['max_nodes']:
        raise SettingsError(
            f"compute.min_nodes ({compute['min_nodes']}) is larger than compute.max_nodes ({compute['max_nodes']})")

    polling_interval = settings['batch_inference']['polling_interval']
    if polling_interval < 1:
        raise SettingsError('batch_inference.polling_interval must be at least 1 minute')

    test_ratio = settings['training']['test_ratio']
    if not 0 <= test_ratio < 1:
        raise SettingsError(f'training.test_ratio must be in [0, 1), got {test_ratio}')
    return settings


def load_settings(path=None, overrides=None):
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if path.exists():
        with path.open('r', encoding='utf-8') as f:
            try:
                loaded = _yaml().load(f) or {}
            except YAMLError as e:
                raise SettingsError(f"'{path}' is not valid yaml: {e}") from e
        if not isinstance(loaded, dict):
            raise SettingsError(f"'{path}' does not contain a mapping")
        _merge(settings, loaded)
    elif path != DEFAULT_CONFIG_PATH:
        raise FileNotFoundError(path)
    for override in overrides or []:
        apply_override(settings, override)
    return validate_settings(settings)
