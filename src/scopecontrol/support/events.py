from queue import Queue


class EventSource(object):
    """
    A list of handlers that are each called with the arguments passed to fire().

    Handlers may add or remove handlers (including themselves) while an event is
    being fired. The handlers registered when fire() was called are the ones invoked.
    """

    def __init__(self):
        self._handlers = []

    def __iadd__(self, handler):
        return self.add(handler)

    def __isub__(self, handler):
        return self.remove(handler)

    def __len__(self):
        return len(self._handlers)

    def add(self, handler):
        self._handlers.append(handler)
        return self

    def remove(self, handler):
        if handler in self._handlers:
            self._handlers.remove(handler)
        return self

    def clear(self):
        self._handlers = []

    def handlers(self):
        return tuple(self._handlers)

    def fire(self, *args, **kwargs):
        self._fire(*args, **kwargs)

    def fire_all(self, events):
        self._fire_all(events)

    def _fire_all(self, events):
        for e in events:
            self._fire(e)

    def _fire(self, *args, **kwargs):
        for handler in self.handlers():
            handler(*args, **kwargs)


class QueuedEventSource(EventSource):
    """
    the public fire() methods post events to the queue. These are delivered to the
    handlers when the owner calls publish(), typically once the current tick has finished
    iterating its clients.
    """
    def __init__(self):
        super().__init__()
        self.event_queue = Queue()

    def fire(self, event):
        self.event_queue.put(event)

    def fire_all(self, events):
        for e in events:
            self.event_queue.put(e)

    def publish(self):
        """ delivers any queued events on the calling thread.
        :return: the number of events delivered
        """
        queue = self.event_queue
        events = []
        while not queue.empty():
            events.append(queue.get())
        if events:
            self._fire_all(events)
        return len(events)
