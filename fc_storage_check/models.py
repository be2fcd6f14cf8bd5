from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class ClaimStatus(str, Enum):
    """Terminal states of a claim binding attempt"""
    BOUND = "Bound"
    UNBOUND = "Unbound"
    NOT_FOUND = "NotFound"


class WorkloadStatus(str, Enum):
    """Terminal states of a mount verification workload"""
    RUNNING = "Running"
    FAILED = "Failed"
    TIMEOUT = "Timeout"
    SKIPPED = "Skipped"


class DiagnosticStatus(str, Enum):
    """Result categories of a node diagnostic command"""
    SUCCESS = "Success"
    FAILED = "Failed"
    SKIPPED = "Skipped"


@dataclass(frozen=True)
class StorageClassInfo:
    """Data class to hold information regarding a storage class"""
    name: str
    is_default: bool = False
    provisioner: Optional[str] = None


@dataclass(frozen=True)
class NodeInfo:
    """Data class to hold information regarding a node"""
    name: str
    schedulable: bool = True


@dataclass(frozen=True)
class ClaimState:
    """Observed state of a persistent volume claim"""
    phase: Optional[str]
    volume_name: Optional[str] = None


@dataclass(frozen=True)
class PodState:
    """Observed state of a pod"""
    name: str
    phase: Optional[str]
    node_name: Optional[str] = None


def sanitize_node_name(node_name):
    """Turn a node name into something usable inside an object name"""
    return node_name.replace(".", "-").lower()


@dataclass(frozen=True)
class VerificationTarget:
    """One node under test and the object names derived from it"""
    node_name: str
    claim_name: str
    workload_name: str

    @classmethod
    def for_node(cls, node_name, claim_prefix="pvc-", workload_prefix="pod-"):
        suffix = sanitize_node_name(node_name)
        return cls(
            node_name=node_name,
            claim_name=f"{claim_prefix}{suffix}",
            workload_name=f"{workload_prefix}{suffix}",
        )


@dataclass(frozen=True)
class ClaimOutcome:
    target: VerificationTarget
    status: ClaimStatus
    volume_name: Optional[str] = None
    last_phase: Optional[str] = None
    elapsed: float = 0.0

    @property
    def bound(self):
        return self.status == ClaimStatus.BOUND


@dataclass(frozen=True)
class DiagnosticOutcome:
    target: VerificationTarget
    succeeded: bool
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    skipped: bool = False
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def status(self):
        if self.skipped:
            return DiagnosticStatus.SKIPPED
        return DiagnosticStatus.SUCCESS if self.succeeded else DiagnosticStatus.FAILED


@dataclass(frozen=True)
class WorkloadOutcome:
    target: VerificationTarget
    status: WorkloadStatus
    skip_reason: Optional[ClaimStatus] = None
    last_phase: Optional[str] = None
    logs: Optional[str] = None
    events: Tuple[str, ...] = ()
    elapsed: float = 0.0

    @classmethod
    def skipped(cls, target, reason):
        return cls(target=target, status=WorkloadStatus.SKIPPED, skip_reason=reason)

    @property
    def label(self):
        """Status text used in summaries, e.g. ``Skipped(Unbound)``"""
        if self.status == WorkloadStatus.SKIPPED and self.skip_reason is not None:
            return f"{self.status.value}({self.skip_reason.value})"
        return self.status.value


@dataclass(frozen=True)
class TargetResult:
    """Per-target breakdown row of a run report"""
    target: VerificationTarget
    claim: ClaimOutcome
    diagnostic: DiagnosticOutcome
    workload: WorkloadOutcome


@dataclass(frozen=True)
class RunReport:
    """Aggregate of every outcome recorded during one run"""
    storage_class: str
    namespace: str
    total: int
    claim_counts: dict
    diagnostic_counts: dict
    workload_counts: dict
    entries: Tuple[TargetResult, ...] = field(default_factory=tuple)
    alternatives: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def claims_bound(self):
        return self.claim_counts.get(ClaimStatus.BOUND.value, 0)

    @property
    def diagnostics_passed(self):
        return self.diagnostic_counts.get(DiagnosticStatus.SUCCESS.value, 0)

    @property
    def workloads_running(self):
        return self.workload_counts.get(WorkloadStatus.RUNNING.value, 0)

    @property
    def failed_entries(self):
        """Entries whose claim did not bind or whose workload did not run"""
        return [
            entry for entry in self.entries
            if not entry.claim.bound or entry.workload.status != WorkloadStatus.RUNNING
        ]
