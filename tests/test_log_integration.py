import os
import tarfile

from conftest import FakeCluster
from fc_storage_check.errors import ClusterQueryError
from fc_storage_check.models import (
    ClaimOutcome,
    ClaimStatus,
    DiagnosticOutcome,
    VerificationTarget,
    WorkloadOutcome,
    WorkloadStatus,
)
from fc_storage_check.utils.log_integration import collect_logs_on_failure, collect_resource_logs, failed_resources_for
from fc_storage_check.utils.metrics_collector import MetricsCollector
from fc_storage_check.utils.report_generator import build_report


def _report(workload_statuses):
    targets = [VerificationTarget.for_node(f"n{i}") for i in range(1, len(workload_statuses) + 1)]
    claims, diagnostics, workloads = [], [], []
    for target, status in zip(targets, workload_statuses):
        if status == WorkloadStatus.SKIPPED:
            claims.append(ClaimOutcome(target, ClaimStatus.UNBOUND, last_phase="Pending"))
            workloads.append(WorkloadOutcome.skipped(target, ClaimStatus.UNBOUND))
        else:
            claims.append(ClaimOutcome(target, ClaimStatus.BOUND, volume_name="pv"))
            workloads.append(WorkloadOutcome(target, status))
        diagnostics.append(DiagnosticOutcome(target, succeeded=True, returncode=0, stdout="host0: Online\n"))
    return build_report("fc-san", "dummysan", targets, claims, diagnostics, workloads)


def test_failed_resources():
    report = _report([WorkloadStatus.RUNNING, WorkloadStatus.SKIPPED, WorkloadStatus.FAILED])

    resources = failed_resources_for(report)

    assert [(r["type"], r["name"]) for r in resources] == [
        ("pvc", "pvc-n2"),
        ("pvc", "pvc-n3"),
        ("pod", "pod-n3"),
    ]


def test_nothing_collected_when_all_pass(tmp_path):
    report = _report([WorkloadStatus.RUNNING])

    assert collect_logs_on_failure("run", FakeCluster(), report, base_dir=str(tmp_path)) is None
    assert os.listdir(tmp_path) == []


def test_failure_tarball(tmp_path):
    report = _report([WorkloadStatus.RUNNING, WorkloadStatus.TIMEOUT])
    cluster = FakeCluster(events={"pod-n2": ["[t] Warning/FailedScheduling: 0/3 nodes available"]})
    cluster.claims["pvc-n2"] = {"metadata": {"name": "pvc-n2"}}
    cluster.pods["pod-n2"] = {"metadata": {"name": "pod-n2"}}

    tarball = collect_logs_on_failure("run", cluster, report, metrics_collector=MetricsCollector(), base_dir=str(tmp_path))

    assert tarball.endswith(".tgz")
    with tarfile.open(tarball) as tar:
        names = tar.getnames()
    assert any(name.endswith("failed_resources/pod_pod-n2/events.txt") for name in names)
    assert any(name.endswith("failed_resources/pod_pod-n2/container.log") for name in names)
    assert any(name.endswith("failed_resources/pvc_pvc-n2/pvc_yaml.yaml") for name in names)
    assert any(name.endswith("metrics/run_metrics.json") for name in names)
    assert any(name.endswith("diagnostics.txt") for name in names)


def test_collection_errors_are_written_not_raised(tmp_path):
    cluster = FakeCluster()

    def broken(namespace, name):
        raise ClusterQueryError("Failed to list events: 500 Internal")

    cluster.list_events = broken

    written = collect_resource_logs(cluster, "pvc", "pvc-n1", "dummysan", str(tmp_path / "pvc"))

    assert len(written) == 2
    with open(tmp_path / "pvc" / "events.txt") as f:
        assert f.read().startswith("Collection failed")
    with open(tmp_path / "pvc" / "pvc_yaml.yaml") as f:
        assert "object not found" in f.read()
