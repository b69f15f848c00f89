import logging
import time

log = logging.getLogger("scheduler")


class Scheduler:
    """Fixed-cadence tick loop. Ticks never overlap; overrun slots are skipped, not queued."""

    def __init__(self, tick, interval: float = 1.0, *, clock=time.monotonic, sleep=time.sleep):
        self._tick = tick
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.ticks = 0
        self.skipped = 0

    def tick(self) -> None:
        try:
            self._tick()
        except Exception:
            # keep ticking no matter what a single tick did
            log.exception("Tick failed")
        self.ticks += 1

    def run(self, max_ticks: int | None = None) -> None:
        next_at = self.clock()
        while max_ticks is None or self.ticks < max_ticks:
            self.tick()
            next_at += self.interval
            now = self.clock()
            if now > next_at:
                missed = int((now - next_at) // self.interval) + 1
                self.skipped += missed
                next_at += missed * self.interval
                log.debug("Tick overran; skipping %s slot(s)", missed)
            self.sleep(max(0.0, next_at - now))
