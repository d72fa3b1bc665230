import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Callable, Any, TypeVar

COMPONENT_NAME = 'pipelines'
LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'

_handler = None


def configure_logging(level='INFO'):
    global _handler
    root = logging.getLogger(COMPONENT_NAME)
    if _handler is None:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(_handler)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
    return root


def get_logger(name):
    return logging.getLogger(COMPONENT_NAME).getChild(name)


@contextmanager
def track_activity(logger, activity_name, activity_full_name=None, custom_dimensions=None):
    activity_info = dict(activity_id=str(uuid.uuid4()), activity_name=activity_name)
    if activity_full_name is not None:
        activity_info.update({'activity_full_name': activity_full_name})
    activity_info.update(custom_dimensions or {})

    start_time = datetime.now()
    completion_status = 'Success'

    logger.info('ActivityStarted, {}'.format(activity_name))
    exception = None

    try:
        yield activity_info
    except Exception as e:
        exception = e
        completion_status = 'Failure'
        activity_info['exception_type'] = type(e).__name__
        activity_info['exception_detail'] = json.dumps(_get_exception_detail(e))
        raise
    finally:
        duration_ms = round((datetime.now() - start_time).total_seconds() * 1000, 2)
        activity_info['completionStatus'] = completion_status
        activity_info['durationMs'] = duration_ms
        message = 'ActivityCompleted: Activity={}, HowEnded={}, Duration={} [ms]'.format(
            activity_name, completion_status, duration_ms)
        if exception:
            message += ', Exception={}; {}'.format(type(exception).__name__, str(exception))
            logger.error(message)
        else:
            logger.info(message)
            logger.debug('Info = {}'.format(repr(activity_info)))


# hint vscode intellisense
_TFunc = TypeVar("_TFunc", bound=Callable[..., Any])


def track(get_logger, activity_name=None, custom_dimensions=None):
    def monitor(func: _TFunc) -> _TFunc:
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger()
            _activity_name = activity_name if activity_name is not None else func.__name__
            _activity_full_name = f'{func.__module__}.{func.__qualname__}'
            with track_activity(logger, _activity_name, _activity_full_name, custom_dimensions):
                return func(*args, **kwargs)

        return wrapper

    return monitor


def _get_exception_detail(e: Exception):
    exception_detail = {}
    # msrest.exceptions.HttpOperationError and friends
    if hasattr(e, 'response') and e.response is not None and hasattr(e.response, 'status_code'):
        exception_detail['http_status_code'] = e.response.status_code
    # azureml._common.exception.AzureMLException
    if hasattr(e, 'inner_exception') and e.inner_exception is not None:
        exception_detail['inner_exception_type'] = type(e.inner_exception).__name__
    if hasattr(e, 'message'):
        exception_detail['error_message'] = e.message
    else:
        exception_detail['error_message'] = str(e)
    return exception_detail
