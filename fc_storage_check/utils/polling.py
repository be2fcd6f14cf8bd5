import time


class Poller:
    """Fixed-interval polling with a bounded timeout

    Clock and sleep are injectable so wait loops can be driven without real
    delays.
    """

    def __init__(self, timeout, interval, clock=None, sleep=None):
        """
        Args:
            timeout: Seconds to keep polling
            interval: Seconds to wait between checks
            clock: Callable returning monotonic seconds
            sleep: Callable taking seconds to wait
        """
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self.timeout = timeout
        self.interval = interval
        self.clock = clock or time.monotonic
        self.sleep = sleep or time.sleep

    def run(self, probe, on_wait=None):
        """Call probe until it returns a value other than None or time runs out

        Args:
            probe: Callable returning None to keep waiting, anything else to stop
            on_wait: Optional callable invoked with elapsed seconds after each
                unsuccessful check

        Returns:
            Tuple of (probe result or None on timeout, elapsed seconds)
        """
        start = self.clock()
        while True:
            result = probe()
            elapsed = self.clock() - start
            if result is not None:
                return result, elapsed
            if elapsed >= self.timeout:
                return None, elapsed
            self.sleep(min(self.interval, self.timeout - elapsed))
            elapsed = self.clock() - start
            if on_wait is not None:
                on_wait(elapsed)
