import json
import logging
import os
import tarfile
from datetime import datetime

import yaml

from fc_storage_check.errors import ClusterQueryError
from fc_storage_check.models import WorkloadStatus


def _write_text(path, content):
    with open(path, "w") as f:
        f.write(content)


def collect_resource_logs(cluster, resource_type, resource_name, namespace, results_dir):
    """
    Collect the state of a specific resource into results_dir

    Args:
        cluster: ClusterClient
        resource_type: 'pod' or 'pvc'
        resource_name: Name of the resource
        namespace: Kubernetes namespace
        results_dir: Directory that receives the files

    Returns:
        List of files written
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Collecting logs for {resource_type}/{resource_name} in namespace {namespace}")
    os.makedirs(results_dir, exist_ok=True)
    written = []

    steps = [
        (f"{resource_type}_yaml.yaml", lambda: _dump_yaml(cluster.dump_object(resource_type, namespace, resource_name))),
        ("events.txt", lambda: "\n".join(cluster.list_events(namespace, resource_name)) + "\n"),
    ]
    if resource_type == "pod":
        steps.append(("container.log", lambda: cluster.read_pod_log(namespace, resource_name) or ""))

    for filename, produce in steps:
        path = os.path.join(results_dir, filename)
        try:
            content = produce()
        except ClusterQueryError as e:
            logger.warning(f"Could not collect {filename} for {resource_type}/{resource_name}: {e}")
            content = f"Collection failed: {e}\n"
        _write_text(path, content)
        written.append(path)

    return written


def _dump_yaml(obj):
    if obj is None:
        return "# object not found\n"
    return yaml.safe_dump(obj, default_flow_style=False)


def failed_resources_for(report):
    """Resources worth collecting for each failed target of a report"""
    resources = []
    for entry in report.failed_entries:
        resources.append({"type": "pvc", "name": entry.target.claim_name, "namespace": report.namespace})
        if entry.workload.status in (WorkloadStatus.FAILED, WorkloadStatus.TIMEOUT):
            resources.append({"type": "pod", "name": entry.target.workload_name, "namespace": report.namespace})
    return resources


def collect_logs_on_failure(test_name, cluster, report, metrics_collector=None, base_dir="logs"):
    """
    Collect failure artifacts for a run and pack them into a tarball

    Args:
        test_name: Name of the run
        cluster: ClusterClient used to read the resources
        report: RunReport of the run
        metrics_collector: Optional metrics collector instance
        base_dir: Directory the artifacts are written under

    Returns:
        Path to the tarball, or None when nothing failed
    """
    logger = logging.getLogger(__name__)
    failed_resources = failed_resources_for(report)
    if not failed_resources:
        return None

    logger.info(f"Run '{test_name}' had failures, collecting logs")
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    main_dir = os.path.join(base_dir, f"{test_name}_failure_{timestamp}")
    resources_dir = os.path.join(main_dir, "failed_resources")
    os.makedirs(resources_dir, exist_ok=True)

    for resource in failed_resources:
        collect_resource_logs(
            cluster,
            resource["type"],
            resource["name"],
            resource["namespace"],
            os.path.join(resources_dir, f"{resource['type']}_{resource['name']}"),
        )

    with open(os.path.join(main_dir, "diagnostics.txt"), "w") as f:
        for entry in report.failed_entries:
            f.write(f"=== {entry.target.node_name} ({entry.diagnostic.status.value}) ===\n")
            f.write(entry.diagnostic.stdout or "")
            f.write(entry.diagnostic.stderr or "")
            f.write("\n")

    if metrics_collector:
        metrics_dir = os.path.join(main_dir, "metrics")
        os.makedirs(metrics_dir, exist_ok=True)
        metrics_file = os.path.join(metrics_dir, "run_metrics.json")
        with open(metrics_file, "w") as f:
            json.dump(metrics_collector.get_all_metrics(), f, indent=2)
        logger.info(f"Metrics saved to {metrics_file}")

    tarball_path = f"{main_dir}.tgz"
    with tarfile.open(tarball_path, "w:gz") as tar:
        tar.add(main_dir, arcname=os.path.basename(main_dir))

    logger.info(f"Failure logs collected to: {tarball_path}")
    return tarball_path
