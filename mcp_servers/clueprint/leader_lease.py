from __future__ import annotations

import contextlib
import errno
import socket
import sys
from dataclasses import dataclass

_ADDR_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}


@dataclass(slots=True)
class PortLease:
    """Inter-process leader lease backed by the well-known TCP port itself.

    Whoever holds the listening socket is the Leader. Losing the bind with
    "address in use" is the signal to run as a Relay Client instead; any other
    bind failure is a real error and propagates.
    """

    host: str
    port: int
    backlog: int = 64
    _sock: socket.socket | None = None

    @property
    def held(self) -> bool:
        return self._sock is not None

    def try_acquire(self) -> bool:
        if self._sock is not None:
            return True

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            # On Windows SO_REUSEADDR lets a second process steal a live port.
            if sys.platform != "win32":
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, int(self.port)))
            sock.listen(self.backlog)
        except OSError as exc:
            with contextlib.suppress(Exception):
                sock.close()
            if exc.errno in _ADDR_IN_USE:
                return False
            raise

        sock.setblocking(False)
        self._sock = sock
        return True

    def listening_socket(self) -> socket.socket | None:
        return self._sock

    def release(self) -> None:
        sock = self._sock
        self._sock = None
        if sock is None:
            return
        with contextlib.suppress(Exception):
            sock.close()


__all__ = ["PortLease"]
