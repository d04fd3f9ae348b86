from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from logging import getLogger
from threading import Event, Lock
from typing import Optional
from serial.threaded import Protocol
from .codec import PacketCodec
from .dataclasses import Packet
from .exceptions import ChannelBusy, CommandTimeout, Cancelled, TransportError, ProtocolError


class PendingRequest:

    def __init__(self, expected_length: int) -> None:
        """The single request awaiting its response

        Arguments:
            expected_length {int} -- total size of the response packet
        """
        self.expected_length = expected_length
        self.future: Future = Future()

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: float = None) -> Packet:
        """Block until the response is decoded

        Keyword Arguments:
            timeout {float} -- seconds (default: {None})

        Returns:
            Packet

        Raises:
            concurrent.futures.TimeoutError
            ProtocolError
            TransportError
            Cancelled
        """
        return self.future.result(timeout)


class CommandChannel(Protocol):

    def __init__(self, transport, codec: PacketCodec = None, timeout: float = 2.0) -> None:
        """One request in flight over a byte stream

        The transport only needs ``write(data)`` and ``drain()``; whoever reads the stream
        feeds the received chunks to ``data_received``.

        Arguments:
            transport -- the byte stream

        Keyword Arguments:
            codec {PacketCodec} -- (default: {None})
            timeout {float} -- default response timeout in seconds (default: {2.0})
        """
        self._logger = getLogger(__name__)
        self.transport = transport
        self.codec = codec or PacketCodec()
        self.timeout = timeout
        self._lock = Lock()
        self._buffer = bytearray()
        self._pending: Optional[PendingRequest] = None
        self._armed = Event()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    @property
    def armed(self) -> bool:
        return self._armed.is_set()

    def wait_armed(self, timeout: float = None) -> bool:
        return self._armed.wait(timeout)

    def send(self, packet: bytes, expected_length: int) -> PendingRequest:
        """Write a packet and register the response it expects

        Arguments:
            packet {bytes}
            expected_length {int} -- total size of the response packet

        Returns:
            PendingRequest

        Raises:
            ChannelBusy -- a request is already waiting for its response
            TransportError
        """
        with self._lock:
            if self._pending is not None:
                raise ChannelBusy('A command is already waiting for its response')

            self._buffer.clear()
            self._armed.clear()
            request = PendingRequest(expected_length)
            self._pending = request

        self._logger.debug(f'Sending packet: {packet.hex(" ")} - expecting {expected_length} bytes')

        try:
            self.transport.write(packet)
            self.transport.drain()

        except Exception as e:
            self._logger.error(f'Could not write the packet - {e}')
            error = e if isinstance(e, TransportError) else TransportError(str(e))
            self._fail(request, error)
            raise error from e

        with self._lock:
            # Only bytes received after the flush belong to this request
            if self._pending is request:
                self._buffer.clear()
                self._armed.set()

        self._logger.debug('Packet flushed, waiting for the response')

        return request

    def request(self, packet: bytes, expected_length: int, timeout: float = None) -> Packet:
        """Send a packet and wait for its decoded response

        Arguments:
            packet {bytes}
            expected_length {int}

        Keyword Arguments:
            timeout {float} -- seconds, the channel default when omitted (default: {None})

        Returns:
            Packet

        Raises:
            CommandTimeout
            Cancelled
            ProtocolError
            TransportError
        """
        pending = self.send(packet, expected_length)
        timeout = self.timeout if timeout is None else timeout

        try:
            return pending.result(timeout)

        except FutureTimeoutError:
            self._logger.error(f'No response within {timeout}s')
            error = CommandTimeout(f'No response within {timeout}s')
            if not self._fail(pending, error):
                # The response completed the request while timing out
                return pending.result()
            raise error

    def data_received(self, data: bytes) -> None:
        """Accumulate a chunk of the response

        Arguments:
            data {bytes}
        """
        with self._lock:
            request = self._pending
            if request is None or not self._armed.is_set():
                self._logger.debug(f'Discarding unexpected bytes: {bytes(data).hex(" ")}')
                return

            self._buffer.extend(data)

            if len(self._buffer) < request.expected_length:
                self._logger.debug(f'Fragment received: {len(self._buffer)}/{request.expected_length} bytes')
                return

            received = bytes(self._buffer)
            self._reset()

        self._logger.debug(f'Received packet: {received.hex(" ")}')

        try:
            packet = self.codec.decode(received, request.expected_length)

        except ProtocolError as e:
            self._logger.error(f'Invalid response - {e}')
            self._complete(request, error=e)
            return

        self._complete(request, packet=packet)

    def cancel(self) -> bool:
        """Fail the pending request with Cancelled without waiting on the device

        Returns:
            bool -- whether a request was pending
        """
        with self._lock:
            request = self._pending
            self._reset()

        if request is None:
            return False

        self._logger.debug('Cancelling the pending command')
        self._complete(request, error=Cancelled('The command has been cancelled'))
        return True

    def connection_made(self, transport) -> None:
        self._logger.debug('Serial connection ready')

    def connection_lost(self, exc) -> None:
        if exc is not None:
            self._logger.error(f'Serial connection lost - {exc}')

        with self._lock:
            request = self._pending
            self._reset()

        if request is not None:
            self._complete(request, error=TransportError(f'Connection lost - {exc}'))

    def _fail(self, request: PendingRequest, error: Exception) -> bool:
        with self._lock:
            owned = self._pending is request
            if owned:
                self._reset()

        if owned:
            self._complete(request, error=error)
        return owned

    def _reset(self) -> None:
        self._pending = None
        self._buffer.clear()
        self._armed.clear()

    @staticmethod
    def _complete(request: PendingRequest, packet: Packet = None, error: Exception = None) -> None:
        if request.future.done():
            return

        if error is not None:
            request.future.set_exception(error)
        else:
            request.future.set_result(packet)
