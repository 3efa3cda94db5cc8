import errno
import logging
import select
import socket

from scopecontrol.conduit import base

logger = logging.getLogger(__name__)

_IN_PROGRESS = (0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY, getattr(errno, "WSAEWOULDBLOCK", 10035))


class SocketConduit(base.Conduit):
    """
    A conduit that provides communication via a non-blocking client socket.
    The connection handshake may still be in progress when the conduit is created;
    `ready` becomes True once it completes.
    :param sock The socket, already connected or with a non-blocking connect in progress.
    """
    def __init__(self, sock: socket.socket, connecting=False):
        self.sock = sock
        self._connecting = connecting
        self._outgoing = b''

    @property
    def open(self) -> bool:
        return self.sock.fileno() >= 0

    @property
    def target(self):
        return self.sock

    @property
    def ready(self) -> bool:
        if not self.open:
            return False
        if self._connecting:
            self._check_connected()
        return not self._connecting

    def _check_connected(self):
        _, writable, _ = select.select([], [self.sock], [], 0)
        if writable:
            error = self.sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
            if error:
                raise ConnectionError(error, "unable to connect: %s" % errno.errorcode.get(error, error))
            self._connecting = False

    def read_available(self) -> bytes:
        if not self.ready:
            return b''
        self._send_pending()
        chunks = []
        while True:
            try:
                data = self.sock.recv(4096)
            except (BlockingIOError, InterruptedError):
                break
            if not data:
                raise ConnectionResetError("connection closed by peer")
            chunks.append(data)
        return b''.join(chunks)

    def write(self, data: bytes):
        self._outgoing += data
        if self.ready:
            self._send_pending()

    def _send_pending(self):
        while self._outgoing:
            try:
                sent = self.sock.send(self._outgoing)
            except (BlockingIOError, InterruptedError):
                return
            self._outgoing = self._outgoing[sent:]

    def close(self):
        self._outgoing = b''
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass    # the peer may already have closed the socket
        finally:
            self.sock.close()


def socket_conduit_factory(host, port):
    """
    Starts a non-blocking connection to host:port.
    raises OSError if the host cannot be resolved or the connection is refused outright.
    """
    address = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)[0]
    family, socktype, proto, _, sockaddr = address
    sock = socket.socket(family, socktype, proto)
    sock.setblocking(False)
    result = sock.connect_ex(sockaddr)
    if result not in _IN_PROGRESS:
        sock.close()
        raise ConnectionError(result, "unable to connect to %s:%s" % (host, port))
    logger.info("opening socket to %s:%s" % (host, port))
    return SocketConduit(sock, connecting=result != 0)
