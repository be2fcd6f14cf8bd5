import logging
from dataclasses import dataclass, field
from typing import Optional, Tuple

from fc_storage_check.errors import AmbiguousDefaultClass, ClassNotFound, NoDefaultClass, NoSchedulableNodes

AMBIGUITY_POLICIES = ('first', 'error')


@dataclass(frozen=True)
class Resolution:
    """StorageClass chosen for a run

    alternatives lists the other default-annotated classes that were passed
    over when more than one default exists.
    """
    name: str
    explicit: bool = False
    alternatives: Tuple[str, ...] = field(default_factory=tuple)
    provisioner: Optional[str] = None

    @property
    def ambiguous(self):
        return bool(self.alternatives)


class StorageClassResolver:
    """Pick the StorageClass a run provisions claims from

    With an explicit name the class only has to exist. Without one, the
    cluster's default-annotated classes decide: none is an error, one is
    used, and several are resolved by the ambiguity policy. Policy 'first'
    takes the first class in API order and reports the rest as
    alternatives; policy 'error' refuses to guess.
    """

    def __init__(self, cluster, ambiguity_policy='first'):
        if ambiguity_policy not in AMBIGUITY_POLICIES:
            raise ValueError(f"Unknown ambiguous default policy: {ambiguity_policy}")
        self.cluster = cluster
        self.ambiguity_policy = ambiguity_policy
        self.logger = logging.getLogger(__name__)

    def resolve(self, explicit=None):
        classes = self.cluster.list_storage_classes()
        names = [sc.name for sc in classes]

        if explicit:
            self.logger.info(f"Using specified StorageClass: {explicit}")
            if explicit not in names and not self.cluster.storage_class_exists(explicit):
                raise ClassNotFound(explicit, available=names)
            provisioner = next((sc.provisioner for sc in classes if sc.name == explicit), None)
            return Resolution(name=explicit, explicit=True, provisioner=provisioner)

        self.logger.info("No StorageClass specified, looking for defaults...")
        defaults = [sc for sc in classes if sc.is_default]

        if not defaults:
            raise NoDefaultClass(available=names)

        if len(defaults) == 1:
            self.logger.info(f"Found single default StorageClass: {defaults[0].name}")
            return Resolution(name=defaults[0].name, provisioner=defaults[0].provisioner)

        default_names = [sc.name for sc in defaults]
        if self.ambiguity_policy == 'error':
            raise AmbiguousDefaultClass(default_names)

        chosen = defaults[0]
        self.logger.warning(
            f"Found {len(defaults)} default StorageClasses ({', '.join(default_names)}), "
            f"using the first one: {chosen.name}"
        )
        return Resolution(
            name=chosen.name,
            alternatives=tuple(default_names[1:]),
            provisioner=chosen.provisioner,
        )


class NodeEnumerator:
    """List the nodes a run will verify"""

    def __init__(self, cluster, label_selector=None):
        self.cluster = cluster
        self.label_selector = label_selector
        self.logger = logging.getLogger(__name__)

    def enumerate(self):
        nodes = self.cluster.list_nodes(label_selector=self.label_selector)
        schedulable = [node.name for node in nodes if node.schedulable]
        skipped = [node.name for node in nodes if not node.schedulable]
        if skipped:
            self.logger.info(f"Ignoring {len(skipped)} unschedulable nodes: {', '.join(skipped)}")
        if not schedulable:
            raise NoSchedulableNodes()
        return schedulable
