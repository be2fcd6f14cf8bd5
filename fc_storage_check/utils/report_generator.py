import datetime
import json
import os
import platform
import socket
import sys
from pathlib import Path

import psutil

from fc_storage_check.models import (
    ClaimStatus,
    DiagnosticStatus,
    RunReport,
    TargetResult,
    WorkloadStatus,
)


def _count(statuses, enum_cls):
    counts = {status.value: 0 for status in enum_cls}
    for status in statuses:
        counts[status.value] += 1
    return counts


def _index_by_target(outcomes, targets, kind):
    by_target = {}
    for outcome in outcomes:
        if outcome.target in by_target:
            raise ValueError(f"Duplicate {kind} outcome for node {outcome.target.node_name}")
        by_target[outcome.target] = outcome
    if set(by_target) != set(targets) or len(by_target) != len(targets):
        raise ValueError(f"Expected exactly one {kind} outcome per target")
    return by_target


def build_report(storage_class, namespace, targets, claims, diagnostics, workloads, alternatives=()):
    """Aggregate per-target outcomes into a RunReport

    Pure function: entries follow the order of targets and every status of
    each dimension is present in the counts, zero when unused.

    Args:
        storage_class: StorageClass the run used
        namespace: Test namespace
        targets: Ordered verification targets
        claims: One ClaimOutcome per target
        diagnostics: One DiagnosticOutcome per target
        workloads: One WorkloadOutcome per target
        alternatives: Default classes passed over during resolution

    Returns:
        RunReport
    """
    targets = list(targets)
    if len(set(targets)) != len(targets):
        raise ValueError("Targets must be unique")
    claim_by_target = _index_by_target(claims, targets, "claim")
    diag_by_target = _index_by_target(diagnostics, targets, "diagnostic")
    workload_by_target = _index_by_target(workloads, targets, "workload")

    entries = tuple(
        TargetResult(
            target=target,
            claim=claim_by_target[target],
            diagnostic=diag_by_target[target],
            workload=workload_by_target[target],
        )
        for target in targets
    )

    return RunReport(
        storage_class=storage_class,
        namespace=namespace,
        total=len(targets),
        claim_counts=_count((e.claim.status for e in entries), ClaimStatus),
        diagnostic_counts=_count((e.diagnostic.status for e in entries), DiagnosticStatus),
        workload_counts=_count((e.workload.status for e in entries), WorkloadStatus),
        entries=entries,
        alternatives=tuple(alternatives),
    )


def report_to_dict(report):
    """Serializable form of a RunReport"""
    return {
        "storage_class": report.storage_class,
        "namespace": report.namespace,
        "total_nodes": report.total,
        "alternatives": list(report.alternatives),
        "counts": {
            "claims": dict(report.claim_counts),
            "diagnostics": dict(report.diagnostic_counts),
            "workloads": dict(report.workload_counts),
        },
        "nodes": [
            {
                "node": entry.target.node_name,
                "claim": {
                    "name": entry.target.claim_name,
                    "status": entry.claim.status.value,
                    "volume": entry.claim.volume_name,
                    "last_phase": entry.claim.last_phase,
                    "elapsed": entry.claim.elapsed,
                },
                "diagnostic": {
                    "status": entry.diagnostic.status.value,
                    "returncode": entry.diagnostic.returncode,
                    "error": entry.diagnostic.error,
                },
                "workload": {
                    "name": entry.target.workload_name,
                    "status": entry.workload.label,
                    "last_phase": entry.workload.last_phase,
                    "elapsed": entry.workload.elapsed,
                    "logs": entry.workload.logs,
                    "events": list(entry.workload.events),
                },
            }
            for entry in report.entries
        ],
    }


def format_summary(report, pods=None):
    """Human-readable summary of a run as a list of lines

    Args:
        report: RunReport to describe
        pods: Optional list of PodState currently in the test namespace
    """
    total = report.total
    lines = [
        "=" * 80,
        "=== SUMMARY ===",
        "=" * 80,
        "",
        "Test Results:",
        "-------------",
        f"StorageClass:       {report.storage_class}",
        f"Total Nodes:        {total}",
        f"PVCs Bound:         {report.claims_bound}/{total}",
        f"FC Checks Passed:   {report.diagnostics_passed}/{total}",
        f"Pods Running:       {report.workloads_running}/{total}",
        "",
        "PVC Status:",
    ]
    for entry in report.entries:
        volume = f" ({entry.claim.volume_name})" if entry.claim.volume_name else ""
        lines.append(f"  {entry.target.node_name + ':':<30} {entry.claim.status.value}{volume}")
    lines += ["", "FC Status:"]
    for entry in report.entries:
        lines.append(f"  {entry.target.node_name + ':':<30} {entry.diagnostic.status.value}")
    lines += ["", "Pod Status:"]
    for entry in report.entries:
        lines.append(f"  {entry.target.node_name + ':':<30} {entry.workload.label}")

    if pods is not None:
        lines += ["", f"Pods in namespace {report.namespace}:"]
        if pods:
            lines.append(f"  {'NAME':<40} {'STATUS':<12} NODE")
            for pod in pods:
                lines.append(f"  {pod.name:<40} {str(pod.phase):<12} {pod.node_name or '<none>'}")
        else:
            lines.append("  No pods found")
    return lines


def print_summary(report, pods=None, stream=None):
    stream = stream or sys.stdout
    for line in format_summary(report, pods):
        print(line, file=stream)


class ReportGenerator:
    """Generate verification reports in JSON and text formats"""

    def __init__(self, output_dir="reports"):
        """Initialize report generator

        Args:
            output_dir: Base directory to store reports
        """
        self.base_output_dir = output_dir
        Path(output_dir).mkdir(parents=True, exist_ok=True)

    def _get_output_dir(self, report_type="verification"):
        output_dir = os.path.join(self.base_output_dir, report_type)
        Path(output_dir).mkdir(parents=True, exist_ok=True)
        return output_dir

    def _collect_system_info(self, cluster_info=None):
        """Collect system information for the report

        Args:
            cluster_info: Optional dictionary describing the cluster context

        Returns:
            Dictionary with system information
        """
        system_info = {
            "hostname": socket.gethostname(),
            "platform": platform.platform(),
            "python_version": platform.python_version(),
            "cpu_count": psutil.cpu_count(),
            "memory_total_gb": round(psutil.virtual_memory().total / (1024**3), 2),
            "timestamp": datetime.datetime.now().isoformat(),
        }
        if cluster_info:
            system_info["cluster_server"] = cluster_info.get("server", "Unknown")
            system_info["cluster_user"] = cluster_info.get("user", "Unknown")
            system_info["cluster_context"] = cluster_info.get("context", "Unknown")
        return system_info

    def generate_json_report(self, report, test_name, metrics=None, cluster_info=None):
        """Generate detailed JSON report

        Args:
            report: RunReport
            test_name: Name used as file prefix
            metrics: Optional metrics dictionary
            cluster_info: Optional cluster context description

        Returns:
            Path to the generated report
        """
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = os.path.join(self._get_output_dir(), f"{test_name}_{timestamp}.json")

        document = {
            "test_name": test_name,
            "test_type": "verification",
            "timestamp": timestamp,
            "system_info": self._collect_system_info(cluster_info),
            "results": report_to_dict(report),
            "metrics": metrics or {},
        }

        with open(filepath, 'w') as f:
            json.dump(document, f, indent=2)

        return filepath

    def generate_summary_report(self, report, test_name, cluster_info=None):
        """Generate a human-readable summary report

        Returns:
            Path to the generated report
        """
        timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = os.path.join(self._get_output_dir(), f"{test_name}_{timestamp}_summary.txt")
        system_info = self._collect_system_info(cluster_info)

        with open(filepath, 'w') as f:
            f.write(f"{'='*80}\n")
            f.write(f"FC STORAGE VERIFICATION REPORT: {test_name.upper()}\n")
            f.write(f"{'='*80}\n\n")

            f.write("SYSTEM INFORMATION\n")
            f.write(f"{'-'*80}\n")
            for key, value in system_info.items():
                f.write(f"{key}: {value}\n")
            f.write("\n")

            for line in format_summary(report):
                f.write(f"{line}\n")

            failed = report.failed_entries
            if failed:
                f.write("\nFAILURE DETAILS\n")
                f.write(f"{'-'*80}\n")
                for entry in failed:
                    f.write(f"{entry.target.node_name}:\n")
                    f.write(f"  Claim: {entry.claim.status.value} (last phase: {entry.claim.last_phase})\n")
                    f.write(f"  Workload: {entry.workload.label} (last phase: {entry.workload.last_phase})\n")
                    for event in entry.workload.events:
                        f.write(f"    {event}\n")

            f.write(f"\n{'='*80}\n")
            f.write(f"END OF REPORT: {datetime.datetime.now().isoformat()}\n")
            f.write(f"{'='*80}\n")

        return filepath
