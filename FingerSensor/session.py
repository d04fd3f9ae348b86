from threading import Event, Lock
from typing import Optional
from .enums import SensorStatus, BROADCAST_ADDRESS, DEFAULT_PASSWORD
from .exceptions import SensorIsBusy


class DeviceSession:

    def __init__(self, password: int = DEFAULT_PASSWORD, address: int = BROADCAST_ADDRESS) -> None:
        """What the driver knows about the connected module

        Lives as long as the transport is open; nothing is persisted.

        Keyword Arguments:
            password {int} -- (default: {0xFFFFFFFF})
            address {int} -- (default: {0xFFFFFFFF})
        """
        self._lock = Lock()
        self._cancel = Event()
        self.password = password
        self.address = address
        self.capacity: Optional[int] = None
        self.security_level: Optional[int] = None
        self.status = SensorStatus.FREE

    def learn(self, parameters) -> None:
        """Remember what read_system_parameters reported

        Arguments:
            parameters {SystemParameters}
        """
        self.capacity = parameters.library_size
        self.security_level = parameters.security_level
        self.address = parameters.address

    def acquire(self) -> None:
        """Mark the sensor busy for a workflow

        Raises:
            SensorIsBusy
        """
        with self._lock:
            if self.status != SensorStatus.FREE:
                raise SensorIsBusy('The sensor is busy')
            self.status = SensorStatus.BUSY
            self._cancel.clear()

    def release(self) -> None:
        with self._lock:
            self.status = SensorStatus.FREE

    def request_cancel(self) -> None:
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def wait_cancel(self, timeout: float) -> bool:
        """Sleep for timeout seconds, waking early on cancellation

        Returns:
            bool -- whether cancellation was requested
        """
        return self._cancel.wait(timeout)

    def reset(self) -> None:
        """Forget everything learned from the module"""
        self.capacity = None
        self.security_level = None
        self.status = SensorStatus.FREE
        self._cancel.clear()
