import sys
import argparse

import pipeline_utils
from common.config import load_settings, SettingsError
from common.logger_factory import configure_logging, get_logger

logger = get_logger('run_pipelines')


def _prepare(settings):
    workspace = pipeline_utils.choose_workspace(settings['workspace']['config_path'])
    compute = settings['compute']
    compute_target = pipeline_utils.choose_compute_target(
        workspace,
        compute['name'],
        vm_size=compute['vm_size'],
        min_nodes=compute['min_nodes'],
        max_nodes=compute['max_nodes'],
        idle_seconds_before_scaledown=compute['idle_seconds_before_scaledown'])
    environment = settings['environment']
    run_config = pipeline_utils.define_run_config(compute_target, environment['pip_packages'],
                                                  use_docker=environment['use_docker'])
    datastore = pipeline_utils.get_datastore(workspace, settings['data']['datastore'])
    return workspace, compute_target, run_config, datastore


def train(settings, args):
    workspace, compute_target, run_config, datastore = _prepare(settings)
    pipeline = pipeline_utils.build_training_pipeline(workspace, compute_target, run_config, datastore, settings)
    pipeline_run = pipeline_utils.submit_pipeline(workspace, pipeline, settings['training']['experiment_name'],
                                                  regenerate_outputs=args.regenerate_outputs,
                                                  wait=not args.no_wait)
    if args.promote:
        batch = settings['batch_inference']
        local_model_dir = pipeline_utils.promote_model(pipeline_run, datastore, batch['model_path'])
        if batch['model_name']:
            pipeline_utils.register_model_from_local(workspace, batch['model_name'], local_model_dir,
                                                     tags={'pipeline_run_id': pipeline_run.id})
    print(pipeline_run.id)


def _publish(settings):
    workspace, compute_target, run_config, datastore = _prepare(settings)
    pipeline = pipeline_utils.build_batch_inference_pipeline(workspace, compute_target, run_config, datastore,
                                                             settings)
    batch = settings['batch_inference']
    published_pipeline = pipeline_utils.publish_pipeline(pipeline, batch['pipeline_name'],
                                                         batch['pipeline_description'], batch['pipeline_version'])
    return workspace, datastore, published_pipeline


def publish(settings, args):
    _, _, published_pipeline = _publish(settings)
    print(published_pipeline.id)


def schedule(settings, args):
    batch = settings['batch_inference']
    if args.pipeline_id:
        workspace = pipeline_utils.choose_workspace(settings['workspace']['config_path'])
        datastore = pipeline_utils.get_datastore(workspace, settings['data']['datastore'])
        pipeline_id = args.pipeline_id
    else:
        workspace, datastore, published_pipeline = _publish(settings)
        pipeline_id = published_pipeline.id
    created = pipeline_utils.create_datastore_schedule(
        workspace,
        batch['schedule_name'],
        pipeline_id,
        batch['experiment_name'],
        datastore,
        settings['data']['inference_path'],
        polling_interval=batch['polling_interval'])
    print(created.id)


def disable_schedules(settings, args):
    workspace = pipeline_utils.choose_workspace(settings['workspace']['config_path'])
    for schedule_id in pipeline_utils.disable_schedules(workspace, pipeline_id=args.pipeline_id):
        print(schedule_id)


def build_parser():
    parser = argparse.ArgumentParser(description='Build and run the training and batch inference pipelines')
    parser.add_argument('--config', default=None, help='settings yaml, pipeline_config.yaml by default')
    parser.add_argument('--set', dest='overrides', action='append', default=[], metavar='KEY=VALUE',
                        help='override a setting, e.g. --set compute.max_nodes=4')
    subparsers = parser.add_subparsers(dest='command', required=True)

    train_parser = subparsers.add_parser('train', help='run data prep followed by model training')
    train_parser.add_argument('--regenerate_outputs', action='store_true',
                              help='rerun every step even if a previous result could be reused')
    train_parser.add_argument('--no_wait', action='store_true', help='return after submitting')
    train_parser.add_argument('--promote', action='store_true',
                              help='upload the trained model to batch_inference.model_path')
    train_parser.set_defaults(func=train)

    publish_parser = subparsers.add_parser('publish', help='publish the batch inference pipeline')
    publish_parser.set_defaults(func=publish)

    schedule_parser = subparsers.add_parser('schedule', help='run batch inference when new data arrives')
    schedule_parser.add_argument('--pipeline_id', default=None, help='reuse an already published pipeline')
    schedule_parser.set_defaults(func=schedule)

    disable_parser = subparsers.add_parser('disable-schedules', help='disable active schedules')
    disable_parser.add_argument('--pipeline_id', default=None)
    disable_parser.set_defaults(func=disable_schedules)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == 'train' and args.promote and args.no_wait:
        parser.error('--promote needs the finished run, it cannot be combined with --no_wait')
    try:
        settings = load_settings(args.config, overrides=args.overrides)
    except (SettingsError, FileNotFoundError) as e:
        configure_logging()
        logger.error('Invalid settings: %s', e)
        return 1
    configure_logging(settings['logging']['level'])
    try:
        args.func(settings, args)
    except pipeline_utils.PipelineRunError as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
