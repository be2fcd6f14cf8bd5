import logging
from collections import defaultdict


class MetricsCollector:
    """Collect and store timing metrics during a verification run"""

    def __init__(self):
        """Initialize metrics collector"""
        # Kubernetes events
        self.k8s_events = {
            "binding_times": {},
            "pod_startup_delays": {},
        }

        # Node diagnostics
        self.node_metrics = {
            "diagnostic_durations": {},
            "diagnostic_results": defaultdict(lambda: {"success": 0, "failure": 0}),
        }

        self.logger = logging.getLogger(__name__)

    def track_pv_pvc_binding(self, pvc_name, pv_name, bind_time):
        """Track PV-PVC binding time

        Args:
            pvc_name: Name of the PVC
            pv_name: Name of the PV
            bind_time: Time taken for binding in seconds
        """
        self.k8s_events["binding_times"][f"{pvc_name}-{pv_name}"] = bind_time

    def track_pod_startup_delay(self, pod_name, create_time, ready_time):
        """Track pod startup delay

        Args:
            pod_name: Name of the pod
            create_time: Time when the pod was created
            ready_time: Time when the pod became ready
        """
        delay = ready_time - create_time
        self.k8s_events["pod_startup_delays"][pod_name] = delay

    def track_diagnostic(self, node_name, duration, success=True):
        """Track a node diagnostic command

        Args:
            node_name: Node the command ran against
            duration: Command duration in seconds
            success: Whether the command succeeded
        """
        self.node_metrics["diagnostic_durations"][node_name] = duration
        key = "success" if success else "failure"
        self.node_metrics["diagnostic_results"][node_name][key] += 1

    @staticmethod
    def _summarize(values):
        values = list(values)
        if not values:
            return {"count": 0, "avg": None, "max": None, "min": None}
        return {
            "count": len(values),
            "avg": sum(values) / len(values),
            "max": max(values),
            "min": min(values),
        }

    def get_all_metrics(self):
        """Get all collected metrics

        Returns:
            Dictionary of all metrics
        """
        return {
            "k8s_events": {
                "binding_times": dict(self.k8s_events["binding_times"]),
                "pod_startup_delays": dict(self.k8s_events["pod_startup_delays"]),
            },
            "node": {
                "diagnostic_durations": dict(self.node_metrics["diagnostic_durations"]),
                "diagnostic_results": {
                    node: dict(counts) for node, counts in self.node_metrics["diagnostic_results"].items()
                },
            },
            "summary": {
                "binding_time": self._summarize(self.k8s_events["binding_times"].values()),
                "pod_startup_delay": self._summarize(self.k8s_events["pod_startup_delays"].values()),
                "diagnostic_duration": self._summarize(self.node_metrics["diagnostic_durations"].values()),
            },
        }
