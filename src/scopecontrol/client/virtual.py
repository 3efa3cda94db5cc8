from scopecontrol.client.base import TelescopeClient


class VirtualTelescope(TelescopeClient):
    """
    A telescope without hardware. A goto arrives instantly: the target becomes the telescope's
    position on the next communication tick.
    """

    def __init__(self, id, fov_circles=(), **kwargs):
        super().__init__(id, fov_circles=fov_circles, **kwargs)
        self._target = None
        self.initialize()

    def _open(self):
        self._connected = True

    def _goto(self, target_j2000):
        self._target = target_j2000

    def _communicate(self, log):
        target, self._target = self._target, None
        if target is not None:
            log.info("moved to %s", target)
            self._position_received(target)
