from __future__ import annotations


class BridgeError(Exception):
    pass


class ExtensionNotConnectedError(BridgeError):
    """No Leader/agent link is available and the shared connection record is absent or stale."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(
            message
            or (
                "Extension not connected. The browser extension WebSocket may have disconnected. "
                "Try reloading the extension or refreshing the page."
            )
        )


class RequestTimeoutError(BridgeError):
    def __init__(self, request_type: str) -> None:
        self.request_type = str(request_type or "")
        super().__init__(f"Request timed out: {self.request_type}")


__all__ = ["BridgeError", "ExtensionNotConnectedError", "RequestTimeoutError"]
