import logging

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from fc_storage_check.errors import ClusterQueryError, NotLoggedIn
from fc_storage_check.models import ClaimState, NodeInfo, PodState, StorageClassInfo

DEFAULT_CLASS_ANNOTATION = "storageclass.kubernetes.io/is-default-class"


class ClusterClient:
    """Minimal cluster API used by the verifier

    Wraps the Kubernetes CoreV1/StorageV1 APIs. Expected not-found and
    already-exists answers are handled here; any other API or transport
    failure is raised as ClusterQueryError.
    """

    def __init__(self, core_v1=None, storage_v1=None, request_timeout=30, kubeconfig=None, context=None):
        """Initialize API clients

        Args:
            core_v1: Preconfigured CoreV1Api (loads kubeconfig when omitted)
            storage_v1: Preconfigured StorageV1Api
            request_timeout: Timeout in seconds applied to every API call
            kubeconfig: Path to kubeconfig file (default location when None)
            context: Kubeconfig context to use
        """
        self.logger = logging.getLogger(__name__)
        self.request_timeout = request_timeout
        self.kubeconfig = kubeconfig
        self.context = context
        if core_v1 is None or storage_v1 is None:
            self._load_config()
        self.core_v1 = core_v1 or client.CoreV1Api()
        self.storage_v1 = storage_v1 or client.StorageV1Api()

    def _load_config(self):
        try:
            config.load_kube_config(config_file=self.kubeconfig, context=self.context)
        except (ConfigException, OSError, TypeError) as e:
            try:
                config.load_incluster_config()
                self.logger.info("Using in-cluster service account configuration")
            except ConfigException:
                raise NotLoggedIn(f"Unable to load cluster configuration: {e}") from e

    def _call(self, description, func, *args, **kwargs):
        kwargs.setdefault('_request_timeout', self.request_timeout)
        try:
            return func(*args, **kwargs)
        except ApiException as e:
            raise ClusterQueryError(f"Failed to {description}: {e.status} {e.reason}", status=e.status) from e
        except urllib3.exceptions.HTTPError as e:
            raise ClusterQueryError(f"Failed to {description}: {e}") from e

    def _call_allow_missing(self, description, func, *args, **kwargs):
        """Like _call but return None when the object does not exist"""
        try:
            return self._call(description, func, *args, **kwargs)
        except ClusterQueryError as e:
            if e.status == 404:
                return None
            raise

    def check_credentials(self):
        """Check if credentials are valid by making a simple API call"""
        try:
            self.core_v1.list_namespace(limit=1, _request_timeout=self.request_timeout)
            return True
        except ApiException as e:
            if e.status == 401:
                raise NotLoggedIn("Cluster rejected the configured credentials (401 Unauthorized)") from e
            # A 403 still proves the credentials were accepted
            self.logger.warning(f"Credential check returned {e.status}: {e.reason}")
            return True
        except urllib3.exceptions.HTTPError as e:
            raise ClusterQueryError(f"Cannot reach cluster API: {e}") from e

    def current_context(self):
        """Describe the active kubeconfig context for banners

        Returns:
            Dictionary with server, user and context name
        """
        info = {
            "server": client.Configuration.get_default_copy().host,
            "user": "unknown",
            "context": "unknown",
        }
        try:
            _, active = config.list_kube_config_contexts(config_file=self.kubeconfig)
            if self.context:
                info["context"] = self.context
            elif active:
                info["context"] = active.get("name", "unknown")
            if active:
                info["user"] = active.get("context", {}).get("user", "unknown")
        except (ConfigException, OSError, TypeError):
            pass
        return info

    def list_storage_classes(self):
        """List storage classes in API order"""
        result = self._call("list storage classes", self.storage_v1.list_storage_class)
        classes = []
        for sc in result.items:
            annotations = sc.metadata.annotations or {}
            classes.append(StorageClassInfo(
                name=sc.metadata.name,
                is_default=annotations.get(DEFAULT_CLASS_ANNOTATION) == "true",
                provisioner=sc.provisioner,
            ))
        return classes

    def storage_class_exists(self, name):
        sc = self._call_allow_missing(
            f"read storage class {name}", self.storage_v1.read_storage_class, name=name
        )
        return sc is not None

    def list_nodes(self, label_selector=None):
        """List nodes in API order with their schedulable flag"""
        kwargs = {}
        if label_selector:
            kwargs['label_selector'] = label_selector
        result = self._call("list nodes", self.core_v1.list_node, **kwargs)
        return [
            NodeInfo(name=node.metadata.name, schedulable=not (node.spec and node.spec.unschedulable))
            for node in result.items
        ]

    def ensure_namespace(self, namespace):
        """Create the namespace if it doesn't exist already

        Returns:
            True when the namespace was created, False when it already existed
        """
        existing = self._call_allow_missing(
            f"read namespace {namespace}", self.core_v1.read_namespace, name=namespace
        )
        if existing is not None:
            self.logger.info(f"Namespace '{namespace}' already exists")
            return False

        namespace_manifest = {
            "apiVersion": "v1",
            "kind": "Namespace",
            "metadata": {"name": namespace},
        }
        self._call(f"create namespace {namespace}", self.core_v1.create_namespace, body=namespace_manifest)
        self.logger.info(f"Created namespace '{namespace}'")
        return True

    def apply_claim(self, namespace, manifest):
        """Create a claim or update the existing one with the same name

        Returns:
            'created' or 'updated'
        """
        name = manifest["metadata"]["name"]
        try:
            self._call(
                f"create PVC {name}",
                self.core_v1.create_namespaced_persistent_volume_claim,
                namespace=namespace,
                body=manifest,
            )
            return 'created'
        except ClusterQueryError as e:
            if e.status != 409:
                raise
        self.logger.info(f"PVC {name} already exists, updating its labels")
        existing = self._call(
            f"patch PVC {name}",
            self.core_v1.patch_namespaced_persistent_volume_claim,
            name=name,
            namespace=namespace,
            body={"metadata": {"labels": manifest["metadata"].get("labels", {})}},
        )
        self._warn_on_kept_spec(name, existing, manifest)
        return 'updated'

    def _warn_on_kept_spec(self, name, existing, manifest):
        # Size and access modes of a claim that already exists are not changed
        spec = getattr(existing, "spec", None)
        if spec is None:
            return
        wanted = manifest.get("spec", {})
        wanted_size = wanted.get("resources", {}).get("requests", {}).get("storage")
        requests = spec.resources.requests if spec.resources and spec.resources.requests else {}
        kept_size = requests.get("storage")
        if wanted_size and kept_size and wanted_size != kept_size:
            self.logger.warning(
                f"PVC {name} keeps its existing size {kept_size}, requested {wanted_size} was not applied"
            )
        wanted_modes = wanted.get("accessModes")
        if wanted_modes and spec.access_modes and list(spec.access_modes) != list(wanted_modes):
            self.logger.warning(
                f"PVC {name} keeps its existing access modes {list(spec.access_modes)}, "
                f"requested {list(wanted_modes)} were not applied"
            )

    def read_claim(self, namespace, name):
        """Read claim state, None when the claim does not exist"""
        pvc = self._call_allow_missing(
            f"read PVC {name}",
            self.core_v1.read_namespaced_persistent_volume_claim,
            name=name,
            namespace=namespace,
        )
        if pvc is None:
            return None
        return ClaimState(
            phase=pvc.status.phase if pvc.status else None,
            volume_name=pvc.spec.volume_name if pvc.spec else None,
        )

    def delete_pod(self, namespace, name):
        """Delete a pod, ignoring pods that do not exist

        Returns:
            True when a delete request was issued
        """
        result = self._call_allow_missing(
            f"delete pod {name}",
            self.core_v1.delete_namespaced_pod,
            name=name,
            namespace=namespace,
        )
        return result is not None

    def pod_exists(self, namespace, name):
        return self.read_pod(namespace, name) is not None

    def create_pod(self, namespace, manifest):
        name = manifest["metadata"]["name"]
        self._call(f"create pod {name}", self.core_v1.create_namespaced_pod, namespace=namespace, body=manifest)

    def read_pod(self, namespace, name):
        """Read pod state, None when the pod does not exist"""
        pod = self._call_allow_missing(
            f"read pod {name}",
            self.core_v1.read_namespaced_pod_status,
            name=name,
            namespace=namespace,
        )
        if pod is None:
            return None
        return PodState(
            name=name,
            phase=pod.status.phase if pod.status else None,
            node_name=pod.spec.node_name if pod.spec else None,
        )

    def read_pod_log(self, namespace, name, tail_lines=None):
        kwargs = {}
        if tail_lines:
            kwargs['tail_lines'] = tail_lines
        return self._call(
            f"read logs of pod {name}",
            self.core_v1.read_namespaced_pod_log,
            name=name,
            namespace=namespace,
            **kwargs,
        )

    def list_events(self, namespace, name):
        """Events for one object as printable lines"""
        events = self._call(
            f"list events for {name}",
            self.core_v1.list_namespaced_event,
            namespace=namespace,
            field_selector=f"involvedObject.name={name}",
        )
        return [
            f"[{event.last_timestamp}] {event.type}/{event.reason}: {event.message}"
            for event in events.items
        ]

    def list_pods(self, namespace, label_selector=None):
        kwargs = {}
        if label_selector:
            kwargs['label_selector'] = label_selector
        pods = self._call(f"list pods in {namespace}", self.core_v1.list_namespaced_pod, namespace=namespace, **kwargs)
        return [
            PodState(
                name=pod.metadata.name,
                phase=pod.status.phase if pod.status else None,
                node_name=pod.spec.node_name if pod.spec else None,
            )
            for pod in pods.items
        ]

    def delete_namespace(self, namespace):
        result = self._call_allow_missing(
            f"delete namespace {namespace}", self.core_v1.delete_namespace, name=namespace
        )
        return result is not None

    def dump_object(self, kind, namespace, name):
        """Serialized form of a pod or PVC for failure artifacts"""
        readers = {
            "pod": self.core_v1.read_namespaced_pod,
            "pvc": self.core_v1.read_namespaced_persistent_volume_claim,
        }
        if kind not in readers:
            raise ValueError(f"Unsupported kind: {kind}")
        obj = self._call_allow_missing(f"read {kind} {name}", readers[kind], name=name, namespace=namespace)
        if obj is None:
            return None
        return client.ApiClient().sanitize_for_serialization(obj)
