import logging
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional

from fc_storage_check.models import DiagnosticOutcome


@dataclass(frozen=True)
class DiagnosticRequest:
    """A command to run against one node

    Every element of argv_template is formatted on its own with the node name
    and params, so a parameter value always stays a single argument.
    """
    node_name: str
    argv_template: tuple
    params: dict = field(default_factory=dict)
    timeout: float = 120

    def argv(self):
        values = dict(self.params)
        values['node'] = self.node_name
        return [part.format(**values) for part in self.argv_template]


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def succeeded(self):
        return self.error is None and self.returncode == 0


class SubprocessExecutor:
    """Run diagnostic requests as local processes without a shell"""

    def __init__(self, clock=None):
        self.logger = logging.getLogger(__name__)
        self.clock = clock or time.monotonic

    def run(self, request):
        argv = request.argv()
        self.logger.debug(f"Executing diagnostic command: {argv[:4]}")
        start = self.clock()
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=request.timeout,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                returncode=-1,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                error=f"timed out after {request.timeout}s",
                duration=self.clock() - start,
            )
        except OSError as e:
            return CommandResult(returncode=-1, error=str(e), duration=self.clock() - start)
        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration=self.clock() - start,
        )


def _decode(output):
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode('utf-8', errors='replace')
    return output


class DiagnosticDispatcher:
    """Run the configured out-of-band diagnostic for each target"""

    def __init__(self, diagnostics_config, executor=None, metrics_collector=None):
        self.logger = logging.getLogger(__name__)
        self.enabled = diagnostics_config.get('enabled', True)
        self.argv_template = tuple(diagnostics_config.get('command', ()))
        self.params = dict(diagnostics_config.get('params', {}))
        self.params.setdefault('script', diagnostics_config.get('script', ''))
        self.timeout = diagnostics_config.get('timeout', 120)
        self.output_lines = diagnostics_config.get('output_lines', 30)
        self.executor = executor or SubprocessExecutor()
        self.metrics_collector = metrics_collector

    def build_request(self, target):
        return DiagnosticRequest(
            node_name=target.node_name,
            argv_template=self.argv_template,
            params=self.params,
            timeout=self.timeout,
        )

    def dispatch(self, target):
        """Run diagnostics for a target; failures are recorded, never raised"""
        if not self.enabled:
            return DiagnosticOutcome(target=target, succeeded=False, skipped=True)

        self.logger.info(f"Checking FC on node: {target.node_name}")
        request = self.build_request(target)
        try:
            request.argv()
        except (KeyError, IndexError, ValueError) as e:
            # Bad placeholder in the configured command template
            self.logger.error(f"[{target.node_name}] diagnostic command is misconfigured: {e}")
            return DiagnosticOutcome(target=target, succeeded=False, returncode=None, error=f"misconfigured command: {e}")

        result = self.executor.run(request)

        output = result.stdout if result.stdout else result.stderr
        for line in output.splitlines()[:self.output_lines]:
            self.logger.info(f"  {line}")

        if self.metrics_collector is not None:
            self.metrics_collector.track_diagnostic(target.node_name, result.duration, result.succeeded)

        if result.succeeded:
            self.logger.info(f"FC check completed on node {target.node_name}")
        else:
            reason = result.error or f"exit code {result.returncode}"
            self.logger.error(f"[{target.node_name}] phase=diagnostics FC check failed ({reason})")

        return DiagnosticOutcome(
            target=target,
            succeeded=result.succeeded,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            error=result.error,
            duration=result.duration,
        )
