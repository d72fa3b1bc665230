import os
from pathlib import Path

from azureml.core import Workspace, Experiment, Datastore
from azureml.core.compute import AmlCompute, ComputeTarget
from azureml.core.compute_target import ComputeTargetException
from azureml.core.conda_dependencies import CondaDependencies
from azureml.core.model import Model
from azureml.core.runconfig import RunConfiguration
from azureml.data.data_reference import DataReference
from azureml.data.datapath import DataPath, DataPathComputeBinding
from azureml.pipeline.core import Pipeline, PipelineData, PipelineParameter
from azureml.pipeline.core.schedule import Schedule, ScheduleRecurrence
from azureml.pipeline.steps import PythonScriptStep

from common.logger_factory import get_logger, track

# every step runs from a snapshot of the repository root so that common/ is importable
SOURCE_DIRECTORY = str(Path(__file__).resolve().parent)
PROCESS_SCRIPT = 'process/process.py'
TRAIN_SCRIPT = 'train/train.py'
INFERENCE_SCRIPT = 'inference/inference.py'

DATA_PREP_STEP = 'Data Prep'
TRAIN_STEP = 'Model Training'
INFERENCE_STEP = 'Batch Inference'

PROCESSED_DATA = 'processed_data'
MODEL_DATA = 'model'
SCORED_DATA = 'scored_data'
INPUT_DATA_PARAMETER = 'input_data'

FINISHED_STATUS = 'Finished'


def _get_logger():
    return get_logger(__name__)


class PipelineRunError(RuntimeError):
    def __init__(self, run_id, status):
        super().__init__(f"pipeline run '{run_id}' ended with status '{status}'")
        self.run_id = run_id
        self.status = status


# choose workspace from the config.json downloaded from the portal
def choose_workspace(config_path='config.json'):
    workspace = Workspace.from_config(path=config_path)
    logger = _get_logger()
    logger.info('workspace: %s, resource_group: %s, location: %s',
                workspace.name, workspace.resource_group, workspace.location)
    return workspace


# choose compute target
@track(_get_logger)
def choose_compute_target(workspace, name, vm_size='STANDARD_D2_V2', min_nodes=0, max_nodes=1,
                          idle_seconds_before_scaledown=1800):
    logger = _get_logger()
    try:
        aml_compute = AmlCompute(workspace, name)
        logger.info('Found existing compute target: %s', name)
    except ComputeTargetException:
        logger.info('Creating new compute target: %s', name)
        provisioning_config = AmlCompute.provisioning_configuration(
            vm_size=vm_size,
            min_nodes=min_nodes,
            max_nodes=max_nodes,
            idle_seconds_before_scaledown=idle_seconds_before_scaledown)
        aml_compute = ComputeTarget.create(workspace, name, provisioning_config)
        aml_compute.wait_for_completion(show_output=True)
    return aml_compute


# the same run configuration is shared by all steps
def define_run_config(compute_target, pip_packages, use_docker=True):
    run_config = RunConfiguration()
    run_config.target = compute_target
    run_config.environment.docker.enabled = use_docker
    run_config.environment.python.user_managed_dependencies = False
    run_config.environment.python.conda_dependencies = CondaDependencies.create(pip_packages=list(pip_packages))
    return run_config


def get_datastore(workspace, name=None):
    if name:
        return Datastore.get(workspace, name)
    return workspace.get_default_datastore()


def define_data_reference(datastore, name, path_on_datastore, mode='mount'):
    return DataReference(datastore=datastore, data_reference_name=name, path_on_datastore=path_on_datastore,
                         mode=mode)


def define_pipeline_data(name, datastore):
    return PipelineData(name, datastore=datastore)


# a schedule triggered by a datastore change substitutes the changed path for this parameter
def define_data_path_parameter(name, datastore, path_on_datastore, mode='mount'):
    parameter = PipelineParameter(name=name, default_value=DataPath(datastore=datastore,
                                                                   path_on_datastore=path_on_datastore))
    return parameter, DataPathComputeBinding(mode=mode)


def _column_arguments(data_settings):
    arguments = ['--label_column', data_settings['label_column']]
    if data_settings.get('id_column'):
        arguments += ['--id_column', data_settings['id_column']]
    return arguments


def define_process_step(raw_data, processed_data, process_mode, compute_target, run_config, data_settings,
                        allow_reuse=True):
    return PythonScriptStep(
        name=DATA_PREP_STEP,
        script_name=PROCESS_SCRIPT,
        arguments=['--input', raw_data, '--output', processed_data, '--process_mode', process_mode]
                  + _column_arguments(data_settings),
        inputs=[raw_data],
        outputs=[processed_data],
        compute_target=compute_target,
        source_directory=SOURCE_DIRECTORY,
        runconfig=run_config,
        allow_reuse=allow_reuse)


@track(_get_logger)
def build_training_pipeline(workspace, compute_target, run_config, datastore, settings):
    data_settings = settings['data']
    training = settings['training']
    raw_data = define_data_reference(datastore, 'raw_training_data', data_settings['training_path'])
    processed_data = define_pipeline_data(PROCESSED_DATA, datastore)
    model = define_pipeline_data(MODEL_DATA, datastore)

    process_step = define_process_step(raw_data, processed_data, 'train', compute_target, run_config,
                                       data_settings, allow_reuse=training['allow_reuse'])
    # consuming processed_data is what makes the service run data prep first
    train_step = PythonScriptStep(
        name=TRAIN_STEP,
        script_name=TRAIN_SCRIPT,
        arguments=['--input', processed_data, '--output', model,
                   '--test_ratio', str(training['test_ratio']),
                   '--seed', str(training['seed']),
                   '--max_iter', str(training['max_iter']),
                   '--regularization', str(training['regularization'])]
                  + _column_arguments(data_settings),
        inputs=[processed_data],
        outputs=[model],
        compute_target=compute_target,
        source_directory=SOURCE_DIRECTORY,
        runconfig=run_config,
        allow_reuse=training['allow_reuse'])

    pipeline = Pipeline(workspace=workspace, steps=[process_step, train_step])
    pipeline.validate()
    return pipeline


@track(_get_logger)
def build_batch_inference_pipeline(workspace, compute_target, run_config, datastore, settings):
    data_settings = settings['data']
    batch = settings['batch_inference']
    input_data = define_data_path_parameter(INPUT_DATA_PARAMETER, datastore, data_settings['inference_path'])
    model = define_data_reference(datastore, 'trained_model', batch['model_path'])
    processed_data = define_pipeline_data(PROCESSED_DATA, datastore)
    scored_data = define_pipeline_data(SCORED_DATA, datastore)

    process_step = define_process_step(input_data, processed_data, 'inference', compute_target, run_config,
                                       data_settings, allow_reuse=batch['allow_reuse'])
    arguments = ['--input', processed_data, '--model', model, '--output', scored_data]
    if data_settings.get('id_column'):
        arguments += ['--id_column', data_settings['id_column']]
    inference_step = PythonScriptStep(
        name=INFERENCE_STEP,
        script_name=INFERENCE_SCRIPT,
        arguments=arguments,
        inputs=[processed_data, model],
        outputs=[scored_data],
        compute_target=compute_target,
        source_directory=SOURCE_DIRECTORY,
        runconfig=run_config,
        allow_reuse=batch['allow_reuse'])

    pipeline = Pipeline(workspace=workspace, steps=[process_step, inference_step])
    pipeline.validate()
    return pipeline


@track(_get_logger)
def submit_pipeline(workspace, pipeline, experiment_name, regenerate_outputs=False, wait=True):
    logger = _get_logger()
    experiment = Experiment(workspace, experiment_name)
    pipeline_run = experiment.submit(pipeline, regenerate_outputs=regenerate_outputs)
    logger.info('Submitted pipeline run %s to experiment %s', pipeline_run.id, experiment_name)
    if wait:
        pipeline_run.wait_for_completion(show_output=True)
        status = pipeline_run.get_status()
        if status != FINISHED_STATUS:
            raise PipelineRunError(pipeline_run.id, status)
    return pipeline_run


# pay attention to the situation of reuse
def get_source_child_run_id(child_run):
    properties = child_run.properties
    if 'azureml.reusedrunid' in properties:
        return properties['azureml.reusedrunid']
    else:
        return child_run.id


def find_step_run(pipeline_run, step_name):
    step_runs = pipeline_run.find_step_run(step_name)
    if not step_runs:
        raise LookupError(f"no step named '{step_name}' in pipeline run '{pipeline_run.id}'")
    return step_runs[0]


# download the trained model from the train step and upload it where the batch pipeline reads it
@track(_get_logger)
def promote_model(pipeline_run, datastore, target_path, download_dir='outputs', step_name=TRAIN_STEP,
                  output_name=MODEL_DATA):
    logger = _get_logger()
    step_run = find_step_run(pipeline_run, step_name)
    logger.info('Promoting output %s of step run %s (source run %s)',
                output_name, step_run.id, get_source_child_run_id(step_run))
    port_data = step_run.get_output_data(output_name)
    port_data.download(local_path=download_dir, overwrite=True)
    local_model_dir = os.path.join(download_dir, port_data.path_on_datastore)
    datastore.upload(src_dir=local_model_dir, target_path=target_path, overwrite=True, show_progress=True)
    logger.info('model is uploaded to %s on datastore %s', target_path, datastore.name)
    return local_model_dir


# register the trained model from local
def register_model_from_local(workspace, model_name, model_path, tags=None):
    if not os.path.exists(model_path):
        raise FileNotFoundError(model_path)
    model = Model.register(workspace=workspace, model_name=model_name, model_path=model_path, tags=tags)
    _get_logger().info('model %s is registered from local, version %s', model.name, model.version)
    return model


@track(_get_logger)
def publish_pipeline(pipeline, name, description, version):
    published_pipeline = pipeline.publish(name=name, description=description, version=version,
                                          continue_on_step_failure=False)
    _get_logger().info('Published pipeline %s, endpoint: %s', published_pipeline.id, published_pipeline.endpoint)
    return published_pipeline


# trigger the published pipeline whenever blobs under path_on_datastore are added or modified
@track(_get_logger)
def create_datastore_schedule(workspace, name, pipeline_id, experiment_name, datastore, path_on_datastore,
                              polling_interval=5, data_path_parameter_name=INPUT_DATA_PARAMETER):
    schedule = Schedule.create(workspace,
                               name=name,
                               pipeline_id=pipeline_id,
                               experiment_name=experiment_name,
                               datastore=datastore,
                               path_on_datastore=path_on_datastore,
                               polling_interval=polling_interval,
                               data_path_parameter_name=data_path_parameter_name,
                               description=f'Run {experiment_name} when {path_on_datastore} changes')
    _get_logger().info('Created schedule %s polling %s every %s minute(s)', schedule.id, path_on_datastore,
                       polling_interval)
    return schedule


@track(_get_logger)
def create_recurring_schedule(workspace, name, pipeline_id, experiment_name, frequency='Day', interval=1):
    recurrence = ScheduleRecurrence(frequency=frequency, interval=interval)
    schedule = Schedule.create(workspace,
                               name=name,
                               pipeline_id=pipeline_id,
                               experiment_name=experiment_name,
                               recurrence=recurrence,
                               description=f'Run {experiment_name} every {interval} {frequency}')
    _get_logger().info('Created schedule %s running every %s %s', schedule.id, interval, frequency)
    return schedule


@track(_get_logger)
def disable_schedules(workspace, pipeline_id=None):
    disabled = []
    for schedule in Schedule.list(workspace, pipeline_id=pipeline_id, active_only=True):
        schedule.disable(wait_for_provisioning=True)
        _get_logger().info('Disabled schedule %s (%s)', schedule.id, schedule.name)
        disabled.append(schedule.id)
    return disabled
