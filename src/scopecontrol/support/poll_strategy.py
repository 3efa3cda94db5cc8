import time

from scopecontrol.support.mixins import CommonEqualityMixin


class PollStrategy:
    """ Polls on every call. """
    def __call__(self, current_time=None, dry_run=False):
        return 0


class PeriodPollStrategy(PollStrategy, CommonEqualityMixin):
    """
    Rate-limits an operation to at most once per period.
    Calling the strategy returns how long until the operation is next due; a value <= 0 means
    it is due now, and (unless dry_run is set) restarts the period from current_time.
    """

    def __init__(self, period, last_polled=None):
        """
        :param period: The poll period in seconds.
        """
        self.last_polled = last_polled
        self.period = period

    def __call__(self, current_time=None, dry_run=False):
        if current_time is None:
            current_time = time.monotonic()
        result = self._time_to_poll(current_time)
        if not dry_run and result <= 0:
            self.last_polled = current_time
        return result

    def _time_to_poll(self, current_time):
        return 0 if self.last_polled is None else self.period - (current_time - self.last_polled)

    def reset(self):
        """ the next call is due immediately. """
        self.last_polled = None


def microseconds_to_period(delay):
    return delay / 1000000.0
