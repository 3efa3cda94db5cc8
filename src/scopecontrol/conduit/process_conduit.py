import os
import subprocess

from scopecontrol.conduit.base import DefaultConduit


class ProcessConduit(DefaultConduit):
    """ Provides a conduit to a locally hosted process.
        The process output (stdout and stderr combined) is read without waiting; input is
        written to the process stdin. """

    def __init__(self, *args, cwd=None):
        """
        args: the process image name and any additional arguments required by the process.
        raises OSError and ValueError
        """
        super().__init__()
        self.process = None
        self.cwd = cwd
        self._load(*args)

    @property
    def target(self):
        return self.process

    def _load(self, *args):
        p = subprocess.Popen(args, cwd=self.cwd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
                             stdin=subprocess.PIPE)
        self.process = p
        os.set_blocking(p.stdout.fileno(), False)
        self.set_streams(p.stdout, p.stdin)

    @property
    def open(self):
        """
        The conduit is considered open if the underlying process is still set and alive.
        """
        return self.process is not None and \
            self.process.poll() is None

    def wait_for_exit(self, timeout=None):
        return self.process.wait(timeout)

    def close(self, timeout=2):
        if self.process is not None:
            self.process.terminate()
            try:
                self.process.wait(timeout)
            except subprocess.TimeoutExpired:
                self.process.kill()
                self.process.wait()
            self.process = None
            super().close()
