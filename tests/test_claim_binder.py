from conftest import FakeCluster
from fc_storage_check.errors import ClusterQueryError
from fc_storage_check.models import ClaimStatus, VerificationTarget
from fc_storage_check.orchestrator import ClaimBinder
from fc_storage_check.utils.metrics_collector import MetricsCollector

NAMESPACE = "dummysan"


def _binder(cluster, config, clock, metrics_collector=None):
    return ClaimBinder(
        cluster,
        NAMESPACE,
        "fc-san",
        config['claim'],
        clock=clock,
        sleep=clock.sleep,
        metrics_collector=metrics_collector,
    )


def test_manifest(config, clock):
    target = VerificationTarget.for_node("worker-0.example.com")
    manifest = _binder(FakeCluster(), config, clock).build_manifest(target)

    assert manifest["kind"] == "PersistentVolumeClaim"
    assert manifest["metadata"]["name"] == "pvc-worker-0-example-com"
    assert manifest["metadata"]["labels"]["app"] == "fc-storage-check"
    assert manifest["metadata"]["labels"]["fc-storage-check/node"] == "worker-0-example-com"
    assert manifest["spec"]["storageClassName"] == "fc-san"
    assert manifest["spec"]["accessModes"] == ["ReadWriteOnce"]
    assert manifest["spec"]["resources"]["requests"]["storage"] == "1Gi"


def test_binds_after_pending(config, clock):
    target = VerificationTarget.for_node("n1")
    cluster = FakeCluster(claim_phases={"pvc-n1": ["Pending", "Pending", "Bound"]})
    metrics = MetricsCollector()

    outcome = _binder(cluster, config, clock, metrics).bind(target)

    assert outcome.status == ClaimStatus.BOUND
    assert outcome.bound
    assert outcome.volume_name == "pv-pvc-n1"
    assert outcome.elapsed == 4
    assert metrics.k8s_events["binding_times"] == {"pvc-n1-pv-pvc-n1": 4}


def test_unbound_after_timeout(config, clock):
    target = VerificationTarget.for_node("n2")
    cluster = FakeCluster(claim_phases={"pvc-n2": ["Pending"]})

    outcome = _binder(cluster, config, clock).bind(target)

    assert outcome.status == ClaimStatus.UNBOUND
    assert outcome.last_phase == "Pending"
    assert outcome.elapsed == config['claim']['bind_timeout']
    assert not outcome.bound


def test_missing_claim_is_not_found(config, clock):
    target = VerificationTarget.for_node("n1")
    cluster = FakeCluster(missing_claims=["pvc-n1"])

    outcome = _binder(cluster, config, clock).bind(target)

    assert outcome.status == ClaimStatus.NOT_FOUND
    assert clock.sleeps == []


def test_bind_is_idempotent(config, clock):
    target = VerificationTarget.for_node("n1")
    cluster = FakeCluster()
    binder = _binder(cluster, config, clock)

    first = binder.bind(target)
    second = binder.bind(target)

    assert first.status == second.status == ClaimStatus.BOUND
    assert list(cluster.claims) == ["pvc-n1"]
    assert cluster.mutations_of("apply_claim") == ["pvc-n1", "pvc-n1"]


def test_read_errors_keep_polling(config, clock):
    target = VerificationTarget.for_node("n1")
    cluster = FakeCluster()
    real_read = cluster.read_claim
    failures = iter([True, False])

    def flaky_read(namespace, name):
        if next(failures, False):
            raise ClusterQueryError("connection reset")
        return real_read(namespace, name)

    cluster.read_claim = flaky_read

    outcome = _binder(cluster, config, clock).bind(target)

    assert outcome.status == ClaimStatus.BOUND
    assert outcome.elapsed == config['claim']['poll_interval']
