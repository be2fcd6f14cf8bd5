#!/usr/bin/env python3

import logging
import time
from dataclasses import dataclass, field
from typing import List

from fc_storage_check.diagnostics import DiagnosticDispatcher
from fc_storage_check.errors import ClusterQueryError, RunAborted
from fc_storage_check.models import (
    ClaimOutcome,
    ClaimStatus,
    VerificationTarget,
    WorkloadOutcome,
    WorkloadStatus,
    sanitize_node_name,
)
from fc_storage_check.resolver import NodeEnumerator, Resolution, StorageClassResolver
from fc_storage_check.utils.polling import Poller
from fc_storage_check.utils.report_generator import build_report

APP_LABEL = "fc-storage-check"
NODE_LABEL = "fc-storage-check/node"
WORKLOAD_FAILURE_PHASES = ("Failed", "Error")
EXECUTION_MODES = ("sequential", "phased")


def _node_label_value(node_name):
    # Label values are capped at 63 characters
    return sanitize_node_name(node_name)[:63].strip("-.")


class ClaimBinder:
    """Create a claim for a target and wait for it to bind"""

    def __init__(self, cluster, namespace, storage_class, claim_config, clock=None, sleep=None, metrics_collector=None):
        self.cluster = cluster
        self.namespace = namespace
        self.storage_class = storage_class
        self.claim_config = claim_config
        self.clock = clock
        self.sleep = sleep
        self.metrics_collector = metrics_collector
        self.logger = logging.getLogger(__name__)

    def build_manifest(self, target):
        """Build a PVC manifest based on configuration"""
        labels = {"app": APP_LABEL, NODE_LABEL: _node_label_value(target.node_name)}
        labels.update(self.claim_config.get('labels', {}))
        return {
            "apiVersion": "v1",
            "kind": "PersistentVolumeClaim",
            "metadata": {"name": target.claim_name, "labels": labels},
            "spec": {
                "accessModes": list(self.claim_config.get('access_modes', ["ReadWriteOnce"])),
                "storageClassName": self.storage_class,
                "resources": {
                    "requests": {"storage": self.claim_config.get('size', "1Gi")}
                },
            },
        }

    def bind(self, target):
        """Request a claim for the target and poll until it binds or times out

        Returns:
            ClaimOutcome
        """
        self.logger.info(f"Creating PVC for node: {target.node_name}")
        self.cluster.apply_claim(self.namespace, self.build_manifest(target))

        timeout = self.claim_config.get('bind_timeout', 60)
        poller = Poller(timeout, self.claim_config.get('poll_interval', 2), clock=self.clock, sleep=self.sleep)
        self.logger.info(f"  Waiting for PVC {target.claim_name} to bind ({timeout}s timeout)...")

        last_phase = None

        def probe():
            nonlocal last_phase
            try:
                claim = self.cluster.read_claim(self.namespace, target.claim_name)
            except ClusterQueryError as e:
                self.logger.warning(f"Error checking PVC status: {e}")
                return None
            if claim is None:
                return ClaimStatus.NOT_FOUND, None
            last_phase = claim.phase
            if claim.phase == "Bound":
                return ClaimStatus.BOUND, claim.volume_name
            self.logger.debug(f"PVC {target.claim_name} is in {claim.phase} state, waiting...")
            return None

        result, elapsed = poller.run(probe)

        if result is None:
            self.logger.error(
                f"[{target.node_name}] phase=claim status={ClaimStatus.UNBOUND.value} "
                f"observed={last_phase} after {timeout}s"
            )
            return ClaimOutcome(target=target, status=ClaimStatus.UNBOUND, last_phase=last_phase, elapsed=elapsed)

        status, volume_name = result
        if status == ClaimStatus.NOT_FOUND:
            self.logger.error(f"[{target.node_name}] phase=claim status={status.value} PVC {target.claim_name} not found")
            return ClaimOutcome(target=target, status=status, last_phase=last_phase, elapsed=elapsed)

        self.logger.info(f"  Bound to PV: {volume_name}")
        if self.metrics_collector is not None:
            self.metrics_collector.track_pv_pvc_binding(target.claim_name, volume_name, elapsed)
        return ClaimOutcome(
            target=target,
            status=ClaimStatus.BOUND,
            volume_name=volume_name,
            last_phase="Bound",
            elapsed=elapsed,
        )


class WorkloadVerifier:
    """Run a mount verification pod for a bound claim and observe it once"""

    def __init__(self, cluster, namespace, workload_config, clock=None, sleep=None, metrics_collector=None):
        self.cluster = cluster
        self.namespace = namespace
        self.workload_config = workload_config
        self.clock = clock or time.monotonic
        self.sleep = sleep or time.sleep
        self.metrics_collector = metrics_collector
        self.logger = logging.getLogger(__name__)

    def build_manifest(self, target):
        """Build a pod manifest pinned to the target node and mounting its claim"""
        mount_path = self.workload_config.get('mount_path', '/mnt/test')
        node_label = self.workload_config.get('node_label', 'kubernetes.io/hostname')
        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {
                "name": target.workload_name,
                "labels": {
                    "app": APP_LABEL,
                    "test": "fc-storage",
                    NODE_LABEL: _node_label_value(target.node_name),
                },
            },
            "spec": {
                "affinity": {
                    "nodeAffinity": {
                        "requiredDuringSchedulingIgnoredDuringExecution": {
                            "nodeSelectorTerms": [{
                                "matchExpressions": [{
                                    "key": node_label,
                                    "operator": "In",
                                    "values": [target.node_name],
                                }]
                            }]
                        }
                    }
                },
                "containers": [{
                    "name": "test",
                    "image": self.workload_config.get('image'),
                    "command": ["/bin/bash", "-c"],
                    "args": [self.workload_config.get('script', '')],
                    "env": [{"name": "MOUNT_PATH", "value": mount_path}],
                    "volumeMounts": [{"mountPath": mount_path, "name": "storage"}],
                    "resources": self.workload_config.get('resources', {}),
                }],
                "volumes": [{
                    "name": "storage",
                    "persistentVolumeClaim": {"claimName": target.claim_name},
                }],
                "restartPolicy": "Never",
            },
        }

    def _reset(self, target):
        """Delete a leftover pod with the same name and wait for it to go away

        Returns:
            True when no pod with the target's name remains
        """
        if not self.cluster.delete_pod(self.namespace, target.workload_name):
            return True
        self.logger.info(f"  Deleted existing pod {target.workload_name}, waiting for it to terminate")

        def probe():
            try:
                return True if not self.cluster.pod_exists(self.namespace, target.workload_name) else None
            except ClusterQueryError as e:
                self.logger.warning(f"Error checking pod deletion status: {e}")
                return None

        poller = Poller(
            self.workload_config.get('delete_timeout', 60),
            self.workload_config.get('delete_poll_interval', 2),
            clock=self.clock,
            sleep=self.sleep,
        )
        gone, _ = poller.run(probe)
        return bool(gone)

    def _collect_events(self, target):
        try:
            return tuple(self.cluster.list_events(self.namespace, target.workload_name))
        except ClusterQueryError as e:
            self.logger.warning(f"Error retrieving pod events: {e}")
            return ()

    def _fetch_logs(self, target):
        try:
            return self.cluster.read_pod_log(
                self.namespace,
                target.workload_name,
                tail_lines=self.workload_config.get('log_tail_lines'),
            )
        except ClusterQueryError as e:
            self.logger.warning(f"Error retrieving pod logs: {e}")
            return None

    def verify(self, target, claim_outcome):
        """Verify the claim mounts on the target node

        A single readiness observation: the first Running phase is final.

        Returns:
            WorkloadOutcome
        """
        if not claim_outcome.bound:
            self.logger.warning(
                f"[{target.node_name}] phase=workload status=Skipped "
                f"reason=PVC {claim_outcome.status.value}"
            )
            return WorkloadOutcome.skipped(target, claim_outcome.status)

        self.logger.info(f"Creating test pod on node: {target.node_name}")
        if not self._reset(target):
            self.logger.error(
                f"[{target.node_name}] phase=workload status={WorkloadStatus.TIMEOUT.value} "
                f"previous pod {target.workload_name} did not terminate"
            )
            return WorkloadOutcome(
                target=target,
                status=WorkloadStatus.TIMEOUT,
                last_phase="Terminating",
                events=self._collect_events(target),
            )

        self.cluster.create_pod(self.namespace, self.build_manifest(target))
        created_at = self.clock()

        timeout = self.workload_config.get('ready_timeout', 90)
        progress_interval = self.workload_config.get('progress_interval', 15)
        poller = Poller(timeout, self.workload_config.get('poll_interval', 5), clock=self.clock, sleep=self.sleep)
        self.logger.info(f"  Waiting for pod to start ({timeout}s timeout)...")

        last_phase = None
        next_progress = progress_interval

        def probe():
            nonlocal last_phase
            try:
                pod = self.cluster.read_pod(self.namespace, target.workload_name)
            except ClusterQueryError as e:
                self.logger.warning(f"Error checking pod status: {e}")
                return None
            phase = pod.phase if pod is not None else "NotFound"
            if phase != last_phase:
                self.logger.debug(f"Pod {target.workload_name} phase: {phase}")
                last_phase = phase
            if phase == "Running":
                return WorkloadStatus.RUNNING
            if phase in WORKLOAD_FAILURE_PHASES:
                return WorkloadStatus.FAILED
            return None

        def on_wait(elapsed):
            nonlocal next_progress
            if progress_interval and elapsed >= next_progress:
                self.logger.info(f"    Still waiting... ({int(elapsed)}/{timeout} seconds)")
                while next_progress <= elapsed:
                    next_progress += progress_interval

        status, elapsed = poller.run(probe, on_wait=on_wait)

        if status == WorkloadStatus.RUNNING:
            self.logger.info("  Pod running")
            if self.metrics_collector is not None:
                self.metrics_collector.track_pod_startup_delay(target.workload_name, created_at, created_at + elapsed)
            settle = self.workload_config.get('log_settle_seconds', 3)
            if settle:
                self.sleep(settle)
            logs = self._fetch_logs(target)
            if logs:
                self.logger.info("  Logs:")
                for line in logs.splitlines():
                    self.logger.info(f"    {line}")
            return WorkloadOutcome(
                target=target,
                status=WorkloadStatus.RUNNING,
                last_phase="Running",
                logs=logs,
                elapsed=elapsed,
            )

        status = status or WorkloadStatus.TIMEOUT
        events = self._collect_events(target)
        self.logger.error(
            f"[{target.node_name}] phase=workload status={status.value} observed={last_phase} "
            f"after {elapsed:.0f}s"
        )
        for event in events:
            self.logger.error(f"    {event}")
        return WorkloadOutcome(
            target=target,
            status=status,
            last_phase=last_phase,
            events=events,
            elapsed=elapsed,
        )


@dataclass(frozen=True)
class RunPlan:
    """Read-only result of setup: the class to use and the nodes to test"""
    resolution: Resolution
    nodes: List[str]
    targets: List[VerificationTarget] = field(default_factory=list)


class ProvisioningVerifier:
    """Verify storage provisioning on every schedulable node

    Setup (class resolution, node enumeration) is read-only and any error
    there stops the run before something is created. After that each target
    runs claim, diagnostic and workload phases in that order, and a failing
    target is recorded in the report without stopping the others.
    """

    def __init__(self, cluster, config, diagnostics=None, metrics_collector=None,
                 confirm=None, clock=None, sleep=None):
        """Initialize the verifier

        Args:
            cluster: ClusterClient (or an object with the same interface)
            config: Configuration dictionary (see fc_storage_check.config)
            diagnostics: DiagnosticDispatcher, built from config when omitted
            metrics_collector: Optional MetricsCollector
            confirm: Callable(question) -> bool consulted before continuing
                with an ambiguous default StorageClass; None continues
            clock: Monotonic clock used by wait loops
            sleep: Sleep function used by wait loops
        """
        self.logger = logging.getLogger(__name__)
        self.cluster = cluster
        self.config = config
        self.namespace = config.get('namespace', 'dummysan')
        self.metrics_collector = metrics_collector
        self.confirm = confirm
        self.clock = clock or time.monotonic
        self.sleep = sleep or time.sleep
        self.diagnostics = diagnostics or DiagnosticDispatcher(
            config.get('diagnostics', {}), metrics_collector=metrics_collector
        )

        self.execution_mode = config.get('execution', {}).get('mode', 'sequential')
        if self.execution_mode not in EXECUTION_MODES:
            raise ValueError(f"Unknown execution mode: {self.execution_mode}")

    def prepare(self, storage_class=None):
        """Resolve the StorageClass and the nodes to test without mutating anything

        Returns:
            RunPlan
        """
        self.logger.info("=== StorageClass Selection ===")
        resolver = StorageClassResolver(
            self.cluster,
            ambiguity_policy=self.config.get('storage_class', {}).get('ambiguous_default_policy', 'first'),
        )
        resolution = resolver.resolve(storage_class)

        if resolution.ambiguous and self.confirm is not None:
            if not self.confirm(f"Continue with '{resolution.name}'?"):
                raise RunAborted("Aborted by user")

        self.logger.info(f"StorageClass validated: {resolution.name}")

        self.logger.info("=== Node Discovery ===")
        enumerator = NodeEnumerator(self.cluster, label_selector=self.config.get('nodes', {}).get('label_selector'))
        nodes = enumerator.enumerate()
        self.logger.info(f"Found {len(nodes)} schedulable nodes:")
        for node in nodes:
            self.logger.info(f"  - {node}")

        claim_prefix = self.config.get('claim', {}).get('name_prefix', 'pvc-')
        workload_prefix = self.config.get('workload', {}).get('name_prefix', 'pod-')
        targets = [VerificationTarget.for_node(node, claim_prefix, workload_prefix) for node in nodes]
        return RunPlan(resolution=resolution, nodes=nodes, targets=targets)

    def run(self, storage_class=None):
        """Run the full verification and return the report"""
        return self.execute(self.prepare(storage_class))

    def execute(self, plan):
        """Provision and verify every target of a plan

        Returns:
            RunReport
        """
        self.logger.info("=== Namespace Setup ===")
        self.cluster.ensure_namespace(self.namespace)

        binder = ClaimBinder(
            self.cluster,
            self.namespace,
            plan.resolution.name,
            self.config.get('claim', {}),
            clock=self.clock,
            sleep=self.sleep,
            metrics_collector=self.metrics_collector,
        )
        verifier = WorkloadVerifier(
            self.cluster,
            self.namespace,
            self.config.get('workload', {}),
            clock=self.clock,
            sleep=self.sleep,
            metrics_collector=self.metrics_collector,
        )

        claims, diagnostics, workloads = [], [], []
        if self.execution_mode == 'phased':
            self.logger.info("=== PHASE 1: Creating PVCs ===")
            claims = [binder.bind(target) for target in plan.targets]
            self.logger.info("=== PHASE 2: FC Diagnostics ===")
            diagnostics = [self.diagnostics.dispatch(target) for target in plan.targets]
            self.logger.info("=== PHASE 3: Testing PVC Mounts ===")
            workloads = [verifier.verify(target, claim) for target, claim in zip(plan.targets, claims)]
        else:
            for index, target in enumerate(plan.targets, start=1):
                self.logger.info(f"=== Node {index}/{len(plan.targets)}: {target.node_name} ===")
                claim = binder.bind(target)
                claims.append(claim)
                diagnostics.append(self.diagnostics.dispatch(target))
                workloads.append(verifier.verify(target, claim))

        return build_report(
            plan.resolution.name,
            self.namespace,
            plan.targets,
            claims,
            diagnostics,
            workloads,
            alternatives=plan.resolution.alternatives,
        )

    def list_test_pods(self):
        """Pods currently in the test namespace, for the summary"""
        try:
            return self.cluster.list_pods(self.namespace)
        except ClusterQueryError as e:
            self.logger.warning(f"Error listing pods in {self.namespace}: {e}")
            return None

    def teardown(self):
        """Delete the test namespace and everything in it"""
        self.logger.info(f"Deleting namespace {self.namespace}...")
        deleted = self.cluster.delete_namespace(self.namespace)
        if deleted:
            self.logger.info("Cleanup completed")
        else:
            self.logger.info(f"Namespace {self.namespace} was already gone")
        return deleted
