"""Event signalling shared by the proxy socket and its transport.

Sockets report what happens to them through named events (``connect``,
``data``, ``end``, ``close``, ``timeout``, ``error``, ``drain``). The
EventEmitter here keeps listeners per event name and calls them in the order
they were registered. pipe_stream() forwards the data of one emitter into any
object with ``write`` and ``end`` methods.
"""

from collections import defaultdict
from collections.abc import Callable, Mapping
from typing import Any

from loguru import logger

Listener = Callable[..., Any]


class EventEmitter:
    """Minimal synchronous event emitter."""

    def __init__(self) -> None:
        """Initialize an emitter without any listeners."""
        self._listeners: defaultdict[str, list[tuple[Listener, bool]]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> "EventEmitter":
        """Register a listener called every time event is emitted."""
        self._listeners[event].append((listener, False))
        return self

    def once(self, event: str, listener: Listener) -> "EventEmitter":
        """Register a listener called the next time event is emitted."""
        self._listeners[event].append((listener, True))
        return self

    def off(self, event: str, listener: Listener) -> "EventEmitter":
        """Remove the first registration of listener for event."""
        entries = self._listeners.get(event, [])
        for index, (registered, _) in enumerate(entries):
            if registered == listener:
                del entries[index]
                break
        return self

    def remove_all_listeners(self, event: str | None = None) -> "EventEmitter":
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
        return self

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of event with args.

        An ``error`` event without listeners is logged instead of raised.

        Returns:
            bool: True if at least one listener was called
        """
        entries = self._listeners.get(event)
        if not entries:
            if event == "error":
                logger.error(f"Unhandled error event on {type(self).__name__}: {args[0] if args else None}")
            return False

        self._listeners[event] = [entry for entry in entries if not entry[1]]
        for listener, _ in list(entries):
            listener(*args)
        return True


def pipe_stream(source: EventEmitter, dest: Any, options: Mapping[str, Any] | None = None) -> Any:
    """Forward every data chunk of source to dest.

    The source is paused while dest reports a full buffer (write() returning
    False) and resumed on the destination's ``drain`` event. Unless
    ``options["end"]`` is False, dest.end() is called when source ends.

    Returns:
        The destination, so calls can be chained.
    """
    end = True if options is None else options.get("end", True)

    def on_data(chunk: Any) -> None:
        if dest.write(chunk) is False and hasattr(source, "pause"):
            source.pause()

    source.on("data", on_data)
    if isinstance(dest, EventEmitter) and hasattr(source, "resume"):
        dest.on("drain", lambda: source.resume())
    if end:
        source.once("end", lambda: dest.end())
    return dest
