from dataclasses import dataclass, fields
from typing import Optional
from .dataclasses import DataClass
from .enums import BROADCAST_ADDRESS, DEFAULT_PASSWORD


@dataclass
class SensorConfig(DataClass):
    port: str = '/dev/ttyUSB0'
    baud_rate: int = 57600
    address: int = BROADCAST_ADDRESS
    password: int = DEFAULT_PASSWORD
    serial_timeout: float = 2
    command_timeout: float = 2.0
    scan_attempts: int = 50
    scan_interval: float = 0.1
    scan_timeout: Optional[float] = None
    debounce_delay: float = 1.0
    strict_address: bool = False
    debug: bool = False

    @classmethod
    def create(cls, config: 'SensorConfig' = None, **overrides) -> 'SensorConfig':
        """Build a config from an optional base and keyword overrides

        Keyword Arguments:
            config {SensorConfig} -- (default: {None})

        Returns:
            SensorConfig

        Raises:
            TypeError -- an override names an unknown option
        """
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f'Unknown sensor options: {", ".join(sorted(unknown))}')

        values = {name: getattr(config, name) for name in known} if config else {}
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)
