"""Shared fixtures: an in-memory cluster, a fake clock and a fake executor."""

import copy
from collections import defaultdict

import pytest

from fc_storage_check.config import DEFAULT_CONFIG
from fc_storage_check.diagnostics import CommandResult
from fc_storage_check.models import ClaimState, NodeInfo, PodState, StorageClassInfo


class FakeClock:
    """Monotonic clock whose sleep only advances time"""

    def __init__(self, start=0.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeCluster:
    """In-memory stand-in for ClusterClient

    Claim and pod phases are scripted per object name as a list; each read
    returns the next phase and the last one repeats.
    """

    def __init__(self, storage_classes=(), nodes=(), claim_phases=None, pod_phases=None,
                 missing_claims=(), existing_pods=(), pod_logs=None, events=None):
        self.storage_classes = list(storage_classes)
        self.nodes = list(nodes)
        self.claim_phases = claim_phases or {}
        self.pod_phases = pod_phases or {}
        self.missing_claims = set(missing_claims)
        self.pod_logs = pod_logs or {}
        self.events = events or {}

        self.namespaces = set()
        self.claims = {}
        self.pods = {name: {"metadata": {"name": name}} for name in existing_pods}
        self.mutations = []
        self.claim_reads = defaultdict(int)
        self.pod_reads = defaultdict(int)
        self.undeletable_pods = set()

    # queries

    def check_credentials(self):
        return True

    def current_context(self):
        return {"server": "https://api.test.example:6443", "user": "tester", "context": "test"}

    def list_storage_classes(self):
        return list(self.storage_classes)

    def storage_class_exists(self, name):
        return any(sc.name == name for sc in self.storage_classes)

    def list_nodes(self, label_selector=None):
        return list(self.nodes)

    def read_claim(self, namespace, name):
        if name in self.missing_claims or name not in self.claims:
            return None
        phases = self.claim_phases.get(name, ["Bound"])
        phase = phases[min(self.claim_reads[name], len(phases) - 1)]
        self.claim_reads[name] += 1
        return ClaimState(phase=phase, volume_name=f"pv-{name}" if phase == "Bound" else None)

    def read_pod(self, namespace, name):
        if name not in self.pods:
            return None
        phases = self.pod_phases.get(name, ["Running"])
        phase = phases[min(self.pod_reads[name], len(phases) - 1)]
        self.pod_reads[name] += 1
        return PodState(name=name, phase=phase, node_name=self._pod_node(name))

    def pod_exists(self, namespace, name):
        return name in self.pods

    def read_pod_log(self, namespace, name, tail_lines=None):
        return self.pod_logs.get(name, "Write successful\n")

    def list_events(self, namespace, name):
        return list(self.events.get(name, []))

    def list_pods(self, namespace, label_selector=None):
        return [
            PodState(name=name, phase="Running", node_name=self._pod_node(name))
            for name in self.pods
        ]

    def dump_object(self, kind, namespace, name):
        store = self.pods if kind == "pod" else self.claims
        return copy.deepcopy(store.get(name))

    def _pod_node(self, name):
        try:
            terms = self.pods[name]["spec"]["affinity"]["nodeAffinity"][
                "requiredDuringSchedulingIgnoredDuringExecution"]["nodeSelectorTerms"]
            return terms[0]["matchExpressions"][0]["values"][0]
        except (KeyError, IndexError):
            return None

    # mutations

    def ensure_namespace(self, namespace):
        self.mutations.append(("ensure_namespace", namespace))
        created = namespace not in self.namespaces
        self.namespaces.add(namespace)
        return created

    def apply_claim(self, namespace, manifest):
        name = manifest["metadata"]["name"]
        self.mutations.append(("apply_claim", name))
        existed = name in self.claims
        self.claims[name] = copy.deepcopy(manifest)
        return 'updated' if existed else 'created'

    def delete_pod(self, namespace, name):
        if name not in self.pods:
            return False
        self.mutations.append(("delete_pod", name))
        if name not in self.undeletable_pods:
            del self.pods[name]
        return True

    def create_pod(self, namespace, manifest):
        name = manifest["metadata"]["name"]
        self.mutations.append(("create_pod", name))
        self.pods[name] = copy.deepcopy(manifest)
        self.pod_reads[name] = 0

    def delete_namespace(self, namespace):
        self.mutations.append(("delete_namespace", namespace))
        if namespace not in self.namespaces:
            return False
        self.namespaces.discard(namespace)
        self.claims.clear()
        self.pods.clear()
        return True

    def mutations_of(self, kind):
        return [name for action, name in self.mutations if action == kind]


class FakeExecutor:
    """Diagnostic executor returning canned results per node"""

    def __init__(self, results=None):
        self.results = results or {}
        self.requests = []

    def run(self, request):
        self.requests.append(request)
        return self.results.get(
            request.node_name,
            CommandResult(returncode=0, stdout="host0:\n  Port State: Online\n", duration=1.5),
        )


def make_nodes(*names, unschedulable=()):
    return [NodeInfo(name=name, schedulable=name not in unschedulable) for name in names]


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def executor():
    return FakeExecutor()


@pytest.fixture()
def config():
    """Default configuration with file logging and artifacts turned off"""
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg['logging']['file_enabled'] = False
    cfg['reporting']['collect_failure_artifacts'] = False
    return cfg


@pytest.fixture()
def cluster():
    """Three schedulable nodes and a single default StorageClass"""
    return FakeCluster(
        storage_classes=[
            StorageClassInfo(name="fc-san", is_default=True, provisioner="csi.example.com"),
            StorageClassInfo(name="local", provisioner="kubernetes.io/no-provisioner"),
        ],
        nodes=make_nodes("n1", "n2", "n3"),
    )
