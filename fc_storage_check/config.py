import copy
import logging
import os

import yaml

from fc_storage_check.errors import ConfigError

DEFAULT_CONFIG_PATH = 'config/verifier_config.yaml'

# Runs on the node host through `oc debug`; lists FC adapters, forces a LIP on
# each of them and shows multipath state.
DEFAULT_DIAGNOSTIC_SCRIPT = """\
echo "=== FC Host Adapters ==="
if [ -d /sys/class/fc_host ]; then
  for host in /sys/class/fc_host/host*; do
    if [ -d "$host" ]; then
      echo "$(basename $host):"
      [ -f "$host/port_name" ] && echo "  Port Name: $(cat $host/port_name 2>/dev/null)"
      [ -f "$host/port_state" ] && echo "  Port State: $(cat $host/port_state 2>/dev/null)"
      [ -f "$host/speed" ] && echo "  Speed: $(cat $host/speed 2>/dev/null)"
    fi
  done
  for host in /sys/class/fc_host/host*; do
    [ -f "$host/issue_lip" ] && echo 1 > "$host/issue_lip"
  done
  echo "Total FC hosts: $(ls -d /sys/class/fc_host/host* 2>/dev/null | wc -l)"
else
  echo "No FC hosts found"
fi

echo ""
echo "=== Multipath Devices ==="
if command -v multipath >/dev/null 2>&1; then
  multipath -ll | head -20
else
  echo "Multipath not available"
fi
"""

DEFAULT_WORKLOAD_SCRIPT = """\
echo "Testing storage mount..."
df -h "$MOUNT_PATH"
echo "Write test..."
date > "$MOUNT_PATH/test.txt" && echo "Write successful" || echo "Write failed"
ls -la "$MOUNT_PATH/"
sleep 3600
"""

DEFAULT_CONFIG = {
    'namespace': 'dummysan',
    'logging': {
        'level': 'INFO',
        'file': 'logs/fc_storage_check.log',
        'file_enabled': True,
        'console_enabled': True,
    },
    'cluster': {
        'kubeconfig': None,
        'context': None,
        'request_timeout': 30,
    },
    'storage_class': {
        # 'first' picks the first default class when several are annotated,
        # 'error' refuses to guess
        'ambiguous_default_policy': 'first',
    },
    'nodes': {
        'label_selector': None,
    },
    'claim': {
        'name_prefix': 'pvc-',
        'size': '1Gi',
        'access_modes': ['ReadWriteOnce'],
        'bind_timeout': 60,
        'poll_interval': 2,
        'labels': {},
    },
    'diagnostics': {
        'enabled': True,
        'command': ['oc', 'debug', 'node/{node}', '--', 'chroot', '/host', 'bash', '-c', '{script}'],
        'script': DEFAULT_DIAGNOSTIC_SCRIPT,
        'params': {},
        'timeout': 120,
        'output_lines': 30,
    },
    'workload': {
        'name_prefix': 'pod-',
        'image': 'registry.access.redhat.com/ubi8/ubi-minimal:latest',
        'mount_path': '/mnt/test',
        'script': DEFAULT_WORKLOAD_SCRIPT,
        'node_label': 'kubernetes.io/hostname',
        'resources': {
            'limits': {'memory': '128Mi', 'cpu': '100m'},
        },
        'ready_timeout': 90,
        'poll_interval': 5,
        'progress_interval': 15,
        'delete_timeout': 60,
        'delete_poll_interval': 2,
        'log_settle_seconds': 3,
        'log_tail_lines': 100,
    },
    'execution': {
        # 'sequential' finishes each node before the next one,
        # 'phased' runs all claims, then all diagnostics, then all workloads
        'mode': 'sequential',
    },
    'reporting': {
        'output_dir': 'reports',
        'json': True,
        'summary': True,
        'collect_failure_artifacts': True,
        'artifacts_dir': 'logs',
    },
}


def deep_merge(base, override):
    """Return a copy of base with override merged into it recursively

    Args:
        base: Dictionary with default values
        override: Dictionary whose values take precedence

    Returns:
        New merged dictionary
    """
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(config_path=None):
    """Load configuration from YAML file on top of the defaults

    Args:
        config_path: Path to configuration file. When None, the default path is
            tried and silently skipped if it does not exist.

    Returns:
        Loaded configuration as dictionary
    """
    logger = logging.getLogger(__name__)
    path = config_path or DEFAULT_CONFIG_PATH

    if not os.path.exists(path):
        if config_path is None:
            logger.warning(f"Config file {path} not found, using built-in defaults")
            return copy.deepcopy(DEFAULT_CONFIG)
        raise ConfigError(f"Config file {path} not found")

    try:
        with open(path, 'r') as f:
            user_config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading configuration from {path}: {e}") from e

    if not isinstance(user_config, dict):
        raise ConfigError(f"Configuration in {path} must be a mapping")

    return deep_merge(DEFAULT_CONFIG, user_config)
