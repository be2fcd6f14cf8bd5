import io
import json
import os

import pytest

from fc_storage_check.models import (
    ClaimOutcome,
    ClaimStatus,
    DiagnosticOutcome,
    PodState,
    VerificationTarget,
    WorkloadOutcome,
    WorkloadStatus,
)
from fc_storage_check.utils.report_generator import ReportGenerator, build_report, format_summary, print_summary


@pytest.fixture()
def outcomes():
    targets = [VerificationTarget.for_node(name) for name in ("n1", "n2", "n3")]
    claims = [
        ClaimOutcome(targets[0], ClaimStatus.BOUND, volume_name="pv-1"),
        ClaimOutcome(targets[1], ClaimStatus.UNBOUND, last_phase="Pending"),
        ClaimOutcome(targets[2], ClaimStatus.BOUND, volume_name="pv-3"),
    ]
    diagnostics = [
        DiagnosticOutcome(targets[0], succeeded=True, returncode=0),
        DiagnosticOutcome(targets[1], succeeded=False, returncode=1),
        DiagnosticOutcome(targets[2], succeeded=True, returncode=0),
    ]
    workloads = [
        WorkloadOutcome(targets[0], WorkloadStatus.RUNNING),
        WorkloadOutcome.skipped(targets[1], ClaimStatus.UNBOUND),
        WorkloadOutcome(targets[2], WorkloadStatus.TIMEOUT, last_phase="Pending"),
    ]
    return targets, claims, diagnostics, workloads


def test_counts_sum_to_total(outcomes):
    targets, claims, diagnostics, workloads = outcomes

    report = build_report("fc-san", "dummysan", targets, claims, diagnostics, workloads)

    assert report.total == 3
    for counts in (report.claim_counts, report.diagnostic_counts, report.workload_counts):
        assert sum(counts.values()) == report.total
    assert report.claim_counts == {"Bound": 2, "Unbound": 1, "NotFound": 0}
    assert report.diagnostic_counts == {"Success": 2, "Failed": 1, "Skipped": 0}
    assert report.workload_counts == {"Running": 1, "Failed": 0, "Timeout": 1, "Skipped": 1}


def test_entries_follow_target_order(outcomes):
    targets, claims, diagnostics, workloads = outcomes

    report = build_report("fc-san", "dummysan", targets, list(reversed(claims)), diagnostics, workloads)

    assert [entry.target.node_name for entry in report.entries] == ["n1", "n2", "n3"]
    assert [entry.target.node_name for entry in report.failed_entries] == ["n2", "n3"]


def test_missing_outcome_is_rejected(outcomes):
    targets, claims, diagnostics, workloads = outcomes

    with pytest.raises(ValueError):
        build_report("fc-san", "dummysan", targets, claims[:2], diagnostics, workloads)


def test_duplicate_outcome_is_rejected(outcomes):
    targets, claims, diagnostics, workloads = outcomes

    with pytest.raises(ValueError):
        build_report("fc-san", "dummysan", targets, claims + [claims[0]], diagnostics, workloads)


def test_empty_run():
    report = build_report("fc-san", "dummysan", [], [], [], [])

    assert report.total == 0
    assert report.claims_bound == 0
    assert report.entries == ()


def test_summary_lines(outcomes):
    report = build_report("fc-san", "dummysan", *outcomes)

    lines = format_summary(report, pods=[PodState(name="pod-n1", phase="Running", node_name="n1")])

    assert any(line.startswith("PVCs Bound:") and line.endswith("2/3") for line in lines)
    assert any(line.startswith("FC Checks Passed:") and line.endswith("2/3") for line in lines)
    assert any(line.startswith("Pods Running:") and line.endswith("1/3") for line in lines)
    assert any("n2:" in line and line.endswith("Skipped(Unbound)") for line in lines)
    assert any(line.strip().startswith("pod-n1") and line.endswith("n1") for line in lines)


def test_summary_without_pods(outcomes):
    report = build_report("fc-san", "dummysan", *outcomes)
    stream = io.StringIO()

    print_summary(report, pods=[], stream=stream)

    assert "No pods found" in stream.getvalue()


def test_report_files(outcomes, tmp_path):
    report = build_report("fc-san", "dummysan", *outcomes)
    generator = ReportGenerator(output_dir=str(tmp_path))

    json_path = generator.generate_json_report(
        report, "fc_storage_check", metrics={"summary": {}}, cluster_info={"server": "https://api:6443"}
    )
    summary_path = generator.generate_summary_report(report, "fc_storage_check")

    with open(json_path) as f:
        document = json.load(f)
    assert document["results"]["counts"]["claims"]["Bound"] == 2
    assert document["results"]["nodes"][1]["workload"]["status"] == "Skipped(Unbound)"
    assert document["system_info"]["cluster_server"] == "https://api:6443"
    assert os.path.dirname(json_path) == os.path.join(str(tmp_path), "verification")

    with open(summary_path) as f:
        text = f.read()
    assert "FAILURE DETAILS" in text
    assert "n3:" in text
