from logging import getLogger
from typing import Optional
from serial import Serial, SerialException, EIGHTBITS
from serial.threaded import ReaderThread, Protocol
from .exceptions import TransportError


class SerialTransport:

    def __init__(self, timeout: float = 2) -> None:
        """A serial port whose received bytes are pushed to a protocol from a reader thread

        Keyword Arguments:
            timeout {float} -- The serial communication timeout (default: {2})
        """
        self._logger = getLogger(__name__)
        self._timeout = timeout
        self._serial: Optional[Serial] = None
        self._reader: Optional[ReaderThread] = None

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def open(self, path: str, baud_rate: int, protocol: Protocol) -> None:
        """Open the serial connection and start feeding the protocol

        Arguments:
            path {str}
            baud_rate {int}
            protocol {Protocol} -- receives data_received callbacks

        Raises:
            TransportError
        """
        self._logger.debug(f'Opening the serial connection - port: {path} - baud_rate: {baud_rate}')

        try:
            self._serial = Serial(port=path, baudrate=baud_rate, bytesize=EIGHTBITS, timeout=self._timeout)
            self._reader = ReaderThread(self._serial, lambda: protocol)
            self._reader.start()
            self._reader.connect()

        except (SerialException, OSError) as e:
            self._logger.error(f'Can not open the serial connection - {e}')
            self._serial = None
            self._reader = None
            raise TransportError(f'Can not open {path} - {e}') from e

    def close(self) -> None:
        if self._reader is not None:
            self._logger.debug('Closing the serial connection')
            # Stops the reader thread and closes the port
            self._reader.close()

        elif self._serial is not None and self._serial.is_open:
            self._serial.close()

        self._reader = None
        self._serial = None

    def write(self, data: bytes) -> int:
        """Queue bytes for transmission

        Arguments:
            data {bytes}

        Returns:
            int -- The number of bytes written

        Raises:
            TransportError
        """
        if not self.is_open:
            raise TransportError('The serial connection is not open')

        try:
            return self._serial.write(data)

        except (SerialException, OSError) as e:
            raise TransportError(f'Write failed - {e}') from e

    def drain(self) -> None:
        """Block until all written bytes have left the port

        Raises:
            TransportError
        """
        if not self.is_open:
            raise TransportError('The serial connection is not open')

        try:
            self._serial.flush()

        except (SerialException, OSError) as e:
            raise TransportError(f'Drain failed - {e}') from e
