#!/usr/bin/env python3
import argparse
import logging
import os
import sys
from datetime import datetime

from fc_storage_check.cluster import ClusterClient
from fc_storage_check.config import DEFAULT_CONFIG_PATH, load_config
from fc_storage_check.errors import (
    AmbiguousDefaultClass,
    ClassNotFound,
    ClusterQueryError,
    ConfigError,
    NoDefaultClass,
    NoSchedulableNodes,
    NotLoggedIn,
    RunAborted,
    VerificationError,
)
from fc_storage_check.orchestrator import ProvisioningVerifier
from fc_storage_check.utils.log_integration import collect_logs_on_failure
from fc_storage_check.utils.metrics_collector import MetricsCollector
from fc_storage_check.utils.report_generator import ReportGenerator, print_summary

RUN_NAME = "fc_storage_check"
EXIT_INTERRUPTED = 130


def setup_logging(config):
    """Setup logging based on configuration

    Args:
        config: Configuration dictionary
    """
    log_config = config.get('logging', {})
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)

    handlers = []
    if log_config.get('file_enabled', True):
        log_file = log_config.get('file', 'logs/fc_storage_check.log')
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))
    if log_config.get('console_enabled', True):
        handlers.append(logging.StreamHandler())
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True,
    )

    return logging.getLogger(__name__)


def parse_args(argv=None):
    """Parse command line arguments

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        prog='fc-storage-check',
        description='Verify FC storage provisioning on every schedulable node',
    )
    parser.add_argument(
        'storage_class',
        nargs='?',
        default=None,
        help='StorageClass to test (default: the cluster default StorageClass)'
    )
    parser.add_argument(
        '--config',
        default=None,
        help=f'Path to configuration file (default: {DEFAULT_CONFIG_PATH} when present)'
    )
    parser.add_argument(
        '--namespace',
        default=None,
        help='Namespace for test resources (overrides config value)'
    )
    parser.add_argument(
        '--mode',
        choices=['sequential', 'phased'],
        default=None,
        help='Per-node or per-phase execution order (overrides config value)'
    )
    parser.add_argument(
        '--skip-diagnostics',
        action='store_true',
        help='Do not run the FC diagnostic command on nodes'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Resolve the StorageClass and nodes, print the plan and exit'
    )
    prompts = parser.add_mutually_exclusive_group()
    prompts.add_argument(
        '--yes',
        action='store_true',
        help='Answer yes to every prompt'
    )
    prompts.add_argument(
        '--no-input',
        action='store_true',
        help='Never prompt, answer every question with its default (no)'
    )
    parser.add_argument(
        '--kubeconfig',
        default=None,
        help='Path to kubeconfig file'
    )
    parser.add_argument(
        '--context',
        default=None,
        help='Kubeconfig context to use'
    )

    return parser.parse_args(argv)


def apply_overrides(config, args):
    """Apply command line overrides on top of the loaded configuration"""
    if args.namespace:
        config['namespace'] = args.namespace
    if args.mode:
        config.setdefault('execution', {})['mode'] = args.mode
    if args.skip_diagnostics:
        config.setdefault('diagnostics', {})['enabled'] = False
    if args.kubeconfig:
        config.setdefault('cluster', {})['kubeconfig'] = args.kubeconfig
    if args.context:
        config.setdefault('cluster', {})['context'] = args.context
    return config


def prompt_confirm(question, default=False, input_fn=input):
    """Ask a yes/no question on the terminal

    Only "y" or "yes" (any case) count as yes. An empty answer or a closed
    stdin gives the default.
    """
    suffix = "(Y/n)" if default else "(y/N)"
    try:
        answer = input_fn(f"{question} {suffix}: ")
    except EOFError:
        return default
    answer = (answer or "").strip().lower()
    if not answer:
        return default
    return answer in ('y', 'yes')


def build_confirm(args, input_fn=input):
    if args.yes:
        return lambda question: True
    if args.no_input:
        return lambda question: False
    return lambda question: prompt_confirm(question, input_fn=input_fn)


def print_login_instructions(error):
    print("\n" + "=" * 80)
    print(f"{'NOT LOGGED IN TO A CLUSTER':^80}")
    print("=" * 80)
    print(f"\n{error}")
    print("\nLog in first (for example with 'oc login' or by exporting KUBECONFIG)")
    print("and run the check again.")
    print("=" * 80 + "\n")


def print_banner(cluster_info):
    print("=" * 80)
    print("FC Storage Verification")
    print("=" * 80)
    print(f"Cluster: {cluster_info.get('server', 'Unknown')}")
    print(f"User:    {cluster_info.get('user', 'Unknown')}")
    print(f"Context: {cluster_info.get('context', 'Unknown')}")
    print(f"Date:    {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print()


def print_available_classes(cluster, logger):
    """List the StorageClasses the cluster has, to help pick one"""
    try:
        classes = cluster.list_storage_classes()
    except ClusterQueryError as e:
        logger.warning(f"Could not list storage classes: {e}")
        return
    print("\nAvailable StorageClasses:")
    if not classes:
        print("  (none)")
    for sc in classes:
        default = " (default)" if sc.is_default else ""
        print(f"  {sc.name}{default}  provisioner={sc.provisioner or '<unknown>'}")


def print_alternatives(resolution):
    print(f"\nMultiple default StorageClasses found, using: {resolution.name}")
    print("To test another one, run:")
    for name in resolution.alternatives:
        print(f"  fc-storage-check {name}")
    print()


def print_plan(plan, config):
    print("DRY RUN: nothing will be created")
    print(f"StorageClass: {plan.resolution.name}")
    print(f"Namespace:    {config.get('namespace')}")
    print(f"Mode:         {config.get('execution', {}).get('mode', 'sequential')}")
    print(f"Diagnostics:  {'enabled' if config.get('diagnostics', {}).get('enabled', True) else 'disabled'}")
    print("Targets:")
    for target in plan.targets:
        print(f"  {target.node_name}: pvc={target.claim_name} pod={target.workload_name}")


def print_cleanup_hint(namespace):
    print("\nTest resources were left in place. To clean up manually:")
    print(f"  oc delete namespace {namespace}")


def write_reports(report, config, metrics_collector, cluster_info, logger):
    """Write the JSON and text reports selected in the configuration

    Returns:
        List of written report paths
    """
    reporting = config.get('reporting', {})
    if not (reporting.get('json', True) or reporting.get('summary', True)):
        return []
    report_generator = ReportGenerator(output_dir=reporting.get('output_dir', 'reports'))
    paths = []
    if reporting.get('json', True):
        paths.append(report_generator.generate_json_report(
            report, RUN_NAME, metrics=metrics_collector.get_all_metrics(), cluster_info=cluster_info
        ))
    if reporting.get('summary', True):
        paths.append(report_generator.generate_summary_report(report, RUN_NAME, cluster_info=cluster_info))
    for path in paths:
        logger.info(f"Report generated: {path}")
    return paths


def run(args, config, logger, cluster, confirm, metrics_collector):
    """Drive one verification run

    Returns:
        Process exit code
    """
    cluster_config = config.get('cluster', {})
    try:
        if cluster is None:
            cluster = ClusterClient(
                request_timeout=cluster_config.get('request_timeout', 30),
                kubeconfig=cluster_config.get('kubeconfig'),
                context=cluster_config.get('context'),
            )
        logger.info("Verifying cluster credentials")
        cluster.check_credentials()
    except NotLoggedIn as e:
        logger.error(f"Not logged in: {e}")
        print_login_instructions(e)
        return 1

    cluster_info = cluster.current_context()
    print_banner(cluster_info)

    verifier = ProvisioningVerifier(cluster, config, metrics_collector=metrics_collector, confirm=confirm)
    namespace = verifier.namespace

    try:
        plan = verifier.prepare(args.storage_class)
    except (ClassNotFound, NoDefaultClass) as e:
        logger.error(str(e))
        print_available_classes(cluster, logger)
        if isinstance(e, NoDefaultClass):
            print("\nSpecify one explicitly: fc-storage-check <storageclass>")
        return 1
    except AmbiguousDefaultClass as e:
        logger.error(str(e))
        print("Specify one explicitly:")
        for name in e.candidates:
            print(f"  fc-storage-check {name}")
        return 1
    except (NoSchedulableNodes, RunAborted) as e:
        logger.error(str(e))
        return 1

    if plan.resolution.ambiguous:
        print_alternatives(plan.resolution)

    if args.dry_run:
        print_plan(plan, config)
        return 0

    try:
        report = verifier.execute(plan)
    except VerificationError as e:
        logger.error(f"Cluster API error, aborting run: {e}")
        print_cleanup_hint(namespace)
        return 1

    print_summary(report, pods=verifier.list_test_pods())

    try:
        write_reports(report, config, metrics_collector, cluster_info, logger)
    except (OSError, VerificationError) as e:
        logger.error(f"Error writing reports: {e}", exc_info=True)

    if config.get('reporting', {}).get('collect_failure_artifacts', True) and report.failed_entries:
        try:
            collect_logs_on_failure(
                RUN_NAME,
                cluster,
                report,
                metrics_collector=metrics_collector,
                base_dir=config.get('reporting', {}).get('artifacts_dir', 'logs'),
            )
        except (OSError, VerificationError) as e:
            logger.error(f"Error collecting failure logs: {e}", exc_info=True)

    if confirm("Delete test resources?"):
        try:
            verifier.teardown()
        except VerificationError as e:
            logger.error(f"Cleanup failed: {e}")
            print_cleanup_hint(namespace)
    else:
        print_cleanup_hint(namespace)

    return 0


def main(argv=None, cluster=None, input_fn=input):
    """Main entry point

    Args:
        argv: Command line arguments (sys.argv[1:] when None)
        cluster: Preconfigured ClusterClient, built from configuration when None
        input_fn: Function used to read prompt answers
    """
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)
    apply_overrides(config, args)

    logger = setup_logging(config)
    logger.info(f"Starting FC storage verification with configuration from {args.config or DEFAULT_CONFIG_PATH}")

    metrics_collector = MetricsCollector()
    confirm = build_confirm(args, input_fn)

    try:
        exit_code = run(args, config, logger, cluster, confirm, metrics_collector)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        print_cleanup_hint(config.get('namespace'))
        sys.exit(EXIT_INTERRUPTED)
    except VerificationError as e:
        logger.error(f"Verification aborted: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Error running verification: {e}", exc_info=True)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
