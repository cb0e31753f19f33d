import threading
import time
from functools import wraps


class RateLimiter:
    """Decorator spacing calls at least ``1 / calls_per_second`` apart.

    Shared by every thread calling the wrapped function, so a worker pool
    fanning out fetches still respects the service's rate.
    """

    def __init__(self, calls_per_second):
        if calls_per_second <= 0:
            raise ValueError("calls_per_second must be positive")
        self.interval = 1.0 / calls_per_second
        self.last_call_time = 0.0
        self._lock = threading.Lock()

    def wait(self):
        with self._lock:
            elapsed = time.monotonic() - self.last_call_time
            if elapsed < self.interval:
                time.sleep(self.interval - elapsed)
            self.last_call_time = time.monotonic()

    def __call__(self, func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            self.wait()
            return func(*args, **kwargs)
        return wrapper


# Earth Engine getInfo() round trips
earth_engine_rate_limiter = RateLimiter(calls_per_second=5)
# ECMWF Open Data downloads (e.g. 1 call per second)
ecmwf_rate_limiter = RateLimiter(calls_per_second=1)
