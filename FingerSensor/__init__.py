import struct
from logging import StreamHandler, Formatter, DEBUG, getLogger
from threading import Lock
from typing import Tuple, Union, Optional
from .channel import CommandChannel
from .codec import PacketCodec
from .config import SensorConfig
from .dataclasses import Packet, CommandResult, SystemParameters, TemplateCount, TemplateIndex, SearchResult, \
    MatchResult, StoreResult, RandomCode, Notepad, WorkflowResult
from .enums import PacketKind, Instruction, CharBuffer, SystemParameter, ControlCode, Confirmation, \
    PARAMETER_RANGES, PAGE_SIZE, PAGE_COUNT, NOTEPAD_PAGES, NOTEPAD_PAGE_SIZE, response_length, resolve_confirmation
from .exceptions import InvalidIdentifier, ParameterOutOfRange, InvalidCharacterBuffer, InvalidControlCode, \
    InvalidPosition, NoAvailablePosition
from .session import DeviceSession
from .transport import SerialTransport
from .workflow import Workflow


__all__ = [
    'FingerSensor',
    'SensorConfig',
    'CharBuffer',
    'SystemParameter',
    'ControlCode',
    'Confirmation',
]


class FingerSensor:

    def __init__(self, port: str = None, baud_rate: int = None, address: int = None, password: int = None,
                 serial_timeout: float = None, command_timeout: float = None, debug: bool = None,
                 config: SensorConfig = None, transport=None, **options) -> None:
        """Open the sensor connection

        Keyword Arguments:
            port {str} -- (default: {'/dev/ttyUSB0'})
            baud_rate {int} -- (default: {57600})
            address {int} -- (default: {0xFFFFFFFF})
            password {int} -- (default: {0xFFFFFFFF})
            serial_timeout {float} -- The serial communication timeout (default: {2})
            command_timeout {float} -- How long to wait for each response (default: {2.0})
            debug {bool} -- (default: {False})
            config {SensorConfig} -- base options, overridden by the keywords above (default: {None})
            transport -- a byte stream with open/close/write/drain (default: {SerialTransport})
            **options -- other SensorConfig fields (scan_attempts, scan_interval, ...)
        """
        self.config = SensorConfig.create(
            config, port=port, baud_rate=baud_rate, address=address, password=password,
            serial_timeout=serial_timeout, command_timeout=command_timeout, debug=debug, **options
        )
        if self.config.debug:
            self._setup_logger()
        self._logger = getLogger(__name__)
        self._lock = Lock()
        self.session = DeviceSession(password=self.config.password, address=self.config.address)
        self._codec = PacketCodec(address=self.session.address, strict_address=self.config.strict_address)
        self._transport = transport or SerialTransport(timeout=self.config.serial_timeout)
        self.channel = CommandChannel(self._transport, codec=self._codec, timeout=self.config.command_timeout)
        self.workflow = Workflow(
            self,
            scan_attempts=self.config.scan_attempts,
            scan_interval=self.config.scan_interval,
            scan_timeout=self.config.scan_timeout,
            debounce_delay=self.config.debounce_delay,
        )
        self._transport.open(self.config.port, self.config.baud_rate, self.channel)

    @staticmethod
    def _setup_logger():
        handler = StreamHandler()
        formatter = Formatter("%(levelname)s:%(name)s:%(message)s")
        handler.setFormatter(formatter)
        _logger = getLogger('FingerSensor')
        _logger.setLevel(DEBUG)
        _logger.addHandler(handler)

    def close(self) -> None:
        self._logger.debug('Closing the sensor session')
        self.channel.cancel()
        self._transport.close()
        self.session.reset()

    def __enter__(self) -> 'FingerSensor':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _execute(self, instruction: Instruction, *payload) -> Tuple[Packet, Confirmation]:
        """Send a command packet and wait for its acknowledgement

        Arguments:
            instruction {Instruction}
            *payload -- scalar bytes or byte groups

        Returns:
            Tuple[Packet, Confirmation]

        Raises:
            InvalidIdentifier -- the response is not an acknowledge packet
            ProtocolError
            CommandTimeout
            Cancelled
            TransportError
        """
        packet = self._codec.encode(PacketKind.COMMAND, instruction, *payload)

        with self._lock:
            response = self.channel.request(packet, response_length(instruction))

        if response.kind != PacketKind.ACK:
            self._logger.error('The received packet is not an ACK packet')
            raise InvalidIdentifier(f'Expected an acknowledge packet, received {response.kind.name}')

        confirmation = resolve_confirmation(instruction, response.confirmation_code)

        self._logger.debug(
            f'{instruction.name} confirmation: 0x{response.confirmation_code:02X} ({confirmation.name})'
        )

        return response, confirmation

    def _simple(self, instruction: Instruction, *payload) -> CommandResult:
        response, confirmation = self._execute(instruction, *payload)
        return CommandResult(instruction, response.confirmation_code, confirmation)

    @staticmethod
    def _verify_range(name: str, value: int, minimum: int, maximum: int) -> int:
        if not isinstance(value, int) or not minimum <= value <= maximum:
            raise ParameterOutOfRange(f'{name} must be between {minimum} and {maximum} inclusive, got {value!r}')
        return value

    @staticmethod
    def _verify_character_buffer(buffer: Union[CharBuffer, int]) -> CharBuffer:
        try:
            return CharBuffer(buffer)

        except ValueError:
            raise InvalidCharacterBuffer(f'Invalid character buffer {buffer!r}') from None

    def _verify_position(self, position: int, capacity: int) -> int:
        if not isinstance(position, int) or not 0 <= position < capacity:
            self._logger.error(f'Invalid position {position!r} for a library of {capacity}')
            raise InvalidPosition(f'Position {position!r} is outside the library (0-{capacity - 1})')
        return position

    def initialize(self) -> CommandResult:
        """Handshake with the module and learn its system parameters

        Returns:
            CommandResult -- the failed handshake, or the system parameters
        """
        handshake = self.handshake()
        if not handshake.success:
            return handshake
        return self.read_system_parameters()

    def handshake(self) -> CommandResult:
        self._logger.debug('Handshake')
        return self._simple(Instruction.HANDSHAKE)

    def verify_password(self, password: int = None) -> CommandResult:
        """Verify the module password

        Keyword Arguments:
            password {int} -- the session password when omitted (default: {None})

        Returns:
            CommandResult
        """
        password = self.session.password if password is None else password
        self._verify_range('Password', password, 0, 0xFFFFFFFF)
        self._logger.debug('Verifying the password')

        result = self._simple(Instruction.VERIFY_PASSWORD, struct.pack('>I', password))
        if result.success:
            self.session.password = password
        return result

    def set_password(self, password: int) -> CommandResult:
        self._verify_range('Password', password, 0, 0xFFFFFFFF)
        self._logger.debug('Setting the password')

        result = self._simple(Instruction.SET_PASSWORD, struct.pack('>I', password))
        if result.success:
            self.session.password = password
        return result

    def set_module_address(self, address: int) -> CommandResult:
        """Change the module address; later packets are sent to the new address

        Arguments:
            address {int}

        Returns:
            CommandResult
        """
        self._verify_range('Address', address, 0, 0xFFFFFFFF)
        self._logger.debug(f'Setting the module address: {address:#010x}')

        result = self._simple(Instruction.SET_MODULE_ADDRESS, struct.pack('>I', address))
        if result.success:
            self.session.address = address
            self._codec.address = address
        return result

    def set_system_parameter(self, parameter: Union[SystemParameter, int], value: int) -> CommandResult:
        """Set a system parameter

        Arguments:
            parameter {SystemParameter}
            value {int} -- baud divisor 1-12, security level 1-5 or packet length code 0-3

        Returns:
            CommandResult

        Raises:
            ParameterOutOfRange
        """
        try:
            parameter = SystemParameter(parameter)

        except ValueError:
            raise ParameterOutOfRange(f'Invalid parameter {parameter!r}') from None

        minimum, maximum = PARAMETER_RANGES[parameter]
        self._verify_range(parameter.name, value, minimum, maximum)
        self._logger.debug(f'Setting {parameter.name} to {value}')

        result = self._simple(Instruction.SET_SYSTEM_PARAMETER, parameter, value)
        if result.success and parameter == SystemParameter.SECURITY_LEVEL:
            self.session.security_level = value
        return result

    def set_baud_rate(self, divisor: int) -> CommandResult:
        """The serial speed becomes divisor * 9600 once the module restarts"""
        return self.set_system_parameter(SystemParameter.BAUD_RATE_CONTROL, divisor)

    def set_security_level(self, level: int) -> CommandResult:
        return self.set_system_parameter(SystemParameter.SECURITY_LEVEL, level)

    def set_packet_length(self, code: int) -> CommandResult:
        return self.set_system_parameter(SystemParameter.DATA_PACKAGE_LENGTH, code)

    def port_control(self, code: Union[ControlCode, int]) -> CommandResult:
        try:
            code = ControlCode(code)

        except ValueError:
            raise InvalidControlCode(f'Invalid control code {code!r}') from None

        self._logger.debug(f'Port control: {code.name}')
        return self._simple(Instruction.PORT_CONTROL, code)

    def read_system_parameters(self) -> SystemParameters:
        """Read the system parameters and remember the library capacity

        Returns:
            SystemParameters
        """
        self._logger.debug('Reading the system parameters')
        response, confirmation = self._execute(Instruction.READ_SYSTEM_PARAMETERS)

        parameters = SystemParameters(Instruction.READ_SYSTEM_PARAMETERS, response.confirmation_code, confirmation)

        if parameters.success and len(response.payload) >= 16:
            (
                parameters.status_register,
                parameters.system_id,
                parameters.library_size,
                parameters.security_level,
                parameters.address,
                parameters.packet_length,
                parameters.baud_rate,
            ) = struct.unpack('>HHHHIHH', response.payload[:16])

            self._logger.debug(f'System parameters: {parameters.to_json()}')
            self.session.learn(parameters)
            self._codec.address = self.session.address

        return parameters

    def get_template_count(self) -> TemplateCount:
        self._logger.debug('Counting the stored templates')
        response, confirmation = self._execute(Instruction.TEMPLATE_NUM)

        result = TemplateCount(Instruction.TEMPLATE_NUM, response.confirmation_code, confirmation)
        if result.success and len(response.payload) >= 2:
            result.count, = struct.unpack('>H', response.payload[:2])
        return result

    def get_template_index(self, page: int) -> TemplateIndex:
        """Read the occupancy of one index page

        Arguments:
            page {int} -- 0-3

        Returns:
            TemplateIndex -- 256 slots, True when occupied
        """
        self._verify_range('Page', page, 0, PAGE_COUNT - 1)
        self._logger.debug(f'Reading the template index - page: {page}')
        response, confirmation = self._execute(Instruction.READ_INDEX_TABLE, page)

        result = TemplateIndex(Instruction.READ_INDEX_TABLE, response.confirmation_code, confirmation, page=page)
        if result.success:
            bitmap = response.payload[:PAGE_SIZE // 8]
            # Bit 0 of each byte is the lowest slot
            result.slots = [bool(byte >> bit & 1) for byte in bitmap for bit in range(8)]
        return result

    def _search_result(self, instruction: Instruction, response: Packet, confirmation: Confirmation) -> SearchResult:
        result = SearchResult(instruction, response.confirmation_code, confirmation)

        if len(response.payload) >= 4:
            result.page_id, result.match_score = struct.unpack('>HH', response.payload[:4])

        if result.confirmation == Confirmation.SEARCH_FOUND and result.page_id == 0 and result.match_score == 0:
            result.confirmation = Confirmation.SEARCH_NOT_FOUND

        self._logger.debug(
            f'{instruction.name} - found: {result.found} - page: {result.page_id} - score: {result.match_score}'
        )
        return result

    def auto_search(self, capture_time: int, start: int = 0, count: int = None) -> SearchResult:
        """Capture, extract and search in one command

        Arguments:
            capture_time {int} -- how long the module waits for a finger (0-255)

        Keyword Arguments:
            start {int} -- first page id (default: {0})
            count {int} -- number of templates, the library capacity when omitted (default: {None})

        Returns:
            SearchResult
        """
        self._verify_range('Capture time', capture_time, 0, 0xFF)
        count = self._library_capacity() if count is None else count
        self._verify_range('Start', start, 0, 0xFFFF)
        self._verify_range('Count', count, 0, 0xFFFF)
        self._logger.debug(f'Auto search - start: {start} - count: {count}')

        response, confirmation = self._execute(
            Instruction.AUTO_SEARCH, capture_time, struct.pack('>H', start), struct.pack('>H', count)
        )
        return self._search_result(Instruction.AUTO_SEARCH, response, confirmation)

    def identify(self) -> SearchResult:
        self._logger.debug('Identify')
        response, confirmation = self._execute(Instruction.IDENTIFY)
        return self._search_result(Instruction.IDENTIFY, response, confirmation)

    def search(self, buffer: Union[CharBuffer, int] = CharBuffer.ONE, start: int = 0,
               count: int = None) -> SearchResult:
        """Search the library for the character file in a buffer

        Keyword Arguments:
            buffer {CharBuffer} -- (default: {CharBuffer.ONE})
            start {int} -- first page id (default: {0})
            count {int} -- number of templates, the library capacity when omitted (default: {None})

        Returns:
            SearchResult -- check found, a zero page with a zero score means no match

        Raises:
            DeviceError -- the library capacity was unknown and could not be read
        """
        buffer = self._verify_character_buffer(buffer)
        count = self._library_capacity() if count is None else count
        self._verify_range('Start', start, 0, 0xFFFF)
        self._verify_range('Count', count, 0, 0xFFFF)
        self._logger.debug(f'Searching the library - buffer: {buffer.name} - start: {start} - count: {count}')

        response, confirmation = self._execute(
            Instruction.SEARCH, buffer, struct.pack('>H', start), struct.pack('>H', count)
        )
        return self._search_result(Instruction.SEARCH, response, confirmation)

    def generate_image(self) -> CommandResult:
        """Poll the sensor once for a finger image

        Returns:
            CommandResult -- FINGER_DETECTED, FINGER_UNDETECTED or FINGER_COLLECTION_FAILED
        """
        self._logger.debug('Scanning the finger')
        return self._simple(Instruction.GENERATE_IMAGE)

    def generate_character_from_image(self, buffer: Union[CharBuffer, int]) -> CommandResult:
        buffer = self._verify_character_buffer(buffer)
        self._logger.debug(f'Generating the character file into buffer {buffer.name}')
        return self._simple(Instruction.GENERATE_CHARACTER_FILE, buffer)

    def generate_template(self) -> CommandResult:
        """Merge both character buffers into a template

        Returns:
            CommandResult -- COMBINE_FAILED when they belong to different fingers
        """
        self._logger.debug('Generating the template')
        return self._simple(Instruction.GENERATE_TEMPLATE)

    def check_match(self) -> MatchResult:
        self._logger.debug('Matching the character buffers')
        response, confirmation = self._execute(Instruction.MATCH)

        result = MatchResult(Instruction.MATCH, response.confirmation_code, confirmation)
        if len(response.payload) >= 2:
            result.match_score, = struct.unpack('>H', response.payload[:2])
        return result

    def upload_template(self, buffer: Union[CharBuffer, int]) -> CommandResult:
        buffer = self._verify_character_buffer(buffer)
        self._logger.debug(f'Negotiating the template upload from buffer {buffer.name}')
        return self._simple(Instruction.UPLOAD_TEMPLATE, buffer)

    def download_template(self, buffer: Union[CharBuffer, int]) -> CommandResult:
        buffer = self._verify_character_buffer(buffer)
        self._logger.debug(f'Negotiating the template download into buffer {buffer.name}')
        return self._simple(Instruction.DOWNLOAD_TEMPLATE, buffer)

    def upload_image(self) -> CommandResult:
        self._logger.debug('Negotiating the image upload')
        return self._simple(Instruction.UPLOAD_IMAGE)

    def download_image(self) -> CommandResult:
        self._logger.debug('Negotiating the image download')
        return self._simple(Instruction.DOWNLOAD_IMAGE)

    def _library_capacity(self) -> int:
        if self.session.capacity is None:
            self.read_system_parameters().raise_for_status()
        return self.session.capacity

    def find_free_position(self) -> int:
        """The first free library position, scanning the index pages in order

        Returns:
            int

        Raises:
            NoAvailablePosition
            DeviceError -- an index page could not be read
        """
        self._logger.debug('Getting the available position to store the template')
        capacity = self._library_capacity()

        for page in range(PAGE_COUNT):
            if page * PAGE_SIZE >= capacity:
                break

            index = self.get_template_index(page)
            index.raise_for_status()

            position = index.first_free(limit=capacity)
            if position is not None:
                return position

        self._logger.error('No available position found')
        raise NoAvailablePosition(f'All {capacity} library positions are occupied')

    def store_template(self, buffer: Union[CharBuffer, int] = CharBuffer.ONE,
                       position: Optional[int] = None) -> StoreResult:
        """Store the template from a buffer in the library

        Keyword Arguments:
            buffer {CharBuffer} -- (default: {CharBuffer.ONE})
            position {int} -- page id, the first free one when omitted (default: {None})

        Returns:
            StoreResult

        Raises:
            InvalidPosition
            NoAvailablePosition
            DeviceError -- the system parameters or an index page could not be read
        """
        buffer = self._verify_character_buffer(buffer)
        capacity = self._library_capacity()
        position = self.find_free_position() if position is None else position
        self._verify_position(position, capacity)
        self._logger.debug(f'Storing the template from buffer {buffer.name} at: {position}')

        response, confirmation = self._execute(Instruction.STORE_TEMPLATE, buffer, struct.pack('>H', position))
        return StoreResult(Instruction.STORE_TEMPLATE, response.confirmation_code, confirmation,
                           buffer=buffer, position=position)

    def read_template(self, buffer: Union[CharBuffer, int], position: int) -> CommandResult:
        """Load a stored template into a character buffer"""
        buffer = self._verify_character_buffer(buffer)
        self._verify_position(position, self._library_capacity())
        self._logger.debug(f'Loading the template at {position} into buffer {buffer.name}')
        return self._simple(Instruction.READ_TEMPLATE, buffer, struct.pack('>H', position))

    def delete_template(self, start: int, count: int = 1) -> CommandResult:
        self._verify_range('Start', start, 0, 0xFFFF)
        self._verify_range('Count', count, 1, 0xFFFF)
        self._logger.debug(f'Deleting templates - start: {start} - count: {count}')
        return self._simple(Instruction.DELETE_TEMPLATE, struct.pack('>H', start), struct.pack('>H', count))

    def empty_library(self) -> CommandResult:
        self._logger.debug('Emptying the finger library')
        return self._simple(Instruction.EMPTY_FINGER_LIBRARY)

    def get_random_code(self) -> RandomCode:
        self._logger.debug('Getting a random code')
        response, confirmation = self._execute(Instruction.GET_RANDOM_CODE)

        result = RandomCode(Instruction.GET_RANDOM_CODE, response.confirmation_code, confirmation)
        if result.success and len(response.payload) >= 4:
            result.value, = struct.unpack('>I', response.payload[:4])
        return result

    def write_notepad(self, page: int, data: bytes) -> CommandResult:
        """Write up to 32 bytes to a notepad page, padding with zeros

        Arguments:
            page {int} -- 0-15
            data {bytes}

        Returns:
            CommandResult
        """
        self._verify_range('Notepad page', page, 0, NOTEPAD_PAGES - 1)
        if len(data) > NOTEPAD_PAGE_SIZE:
            raise ParameterOutOfRange(f'A notepad page holds {NOTEPAD_PAGE_SIZE} bytes, got {len(data)}')

        self._logger.debug(f'Writing notepad page {page}')
        return self._simple(Instruction.WRITE_NOTEPAD, page, bytes(data).ljust(NOTEPAD_PAGE_SIZE, b'\x00'))

    def read_notepad(self, page: int) -> Notepad:
        self._verify_range('Notepad page', page, 0, NOTEPAD_PAGES - 1)
        self._logger.debug(f'Reading notepad page {page}')
        response, confirmation = self._execute(Instruction.READ_NOTEPAD, page)

        result = Notepad(Instruction.READ_NOTEPAD, response.confirmation_code, confirmation, page=page)
        if result.success:
            result.data = bytes(response.payload[:NOTEPAD_PAGE_SIZE])
        return result

    def scan_finger(self, **limits) -> WorkflowResult:
        return self.workflow.scan_finger(**limits)

    def enroll(self) -> WorkflowResult:
        return self.workflow.enroll()

    def check_finger(self, start: int = 0, count: int = None) -> WorkflowResult:
        return self.workflow.search(start=start, count=count)

    def list_pages(self, page: int) -> str:
        return self.workflow.list_pages(page)

    def cancel(self) -> None:
        """Stop the running workflow and fail the command in flight"""
        self._logger.debug('Cancelling')
        self.session.request_cancel()
        self.channel.cancel()
