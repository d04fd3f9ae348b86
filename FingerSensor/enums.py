from enum import Enum, IntEnum


HEADER = 0xEF01
BROADCAST_ADDRESS = 0xFFFFFFFF
DEFAULT_PASSWORD = 0xFFFFFFFF

PAGE_SIZE = 256
PAGE_COUNT = 4
NOTEPAD_PAGES = 16
NOTEPAD_PAGE_SIZE = 32


class PacketKind(IntEnum):
    COMMAND = 0x01
    DATA = 0x02
    ACK = 0x07
    END = 0x08


class Instruction(IntEnum):
    GENERATE_IMAGE = 0x01
    GENERATE_CHARACTER_FILE = 0x02
    MATCH = 0x03
    SEARCH = 0x04
    GENERATE_TEMPLATE = 0x05
    STORE_TEMPLATE = 0x06
    READ_TEMPLATE = 0x07
    UPLOAD_TEMPLATE = 0x08
    DOWNLOAD_TEMPLATE = 0x09
    UPLOAD_IMAGE = 0x0A
    DOWNLOAD_IMAGE = 0x0B
    DELETE_TEMPLATE = 0x0C
    EMPTY_FINGER_LIBRARY = 0x0D
    SET_SYSTEM_PARAMETER = 0x0E
    READ_SYSTEM_PARAMETERS = 0x0F
    SET_PASSWORD = 0x12
    VERIFY_PASSWORD = 0x13
    GET_RANDOM_CODE = 0x14
    SET_MODULE_ADDRESS = 0x15
    PORT_CONTROL = 0x17
    WRITE_NOTEPAD = 0x18
    READ_NOTEPAD = 0x19
    TEMPLATE_NUM = 0x1D
    READ_INDEX_TABLE = 0x1F
    AUTO_SEARCH = 0x32
    IDENTIFY = 0x34
    HANDSHAKE = 0x40


class CharBuffer(IntEnum):
    ONE = 0x01
    TWO = 0x02


class SystemParameter(IntEnum):
    BAUD_RATE_CONTROL = 4
    SECURITY_LEVEL = 5
    DATA_PACKAGE_LENGTH = 6


# Inclusive bounds accepted by SET_SYSTEM_PARAMETER
PARAMETER_RANGES = {
    SystemParameter.BAUD_RATE_CONTROL: (1, 12),
    SystemParameter.SECURITY_LEVEL: (1, 5),
    SystemParameter.DATA_PACKAGE_LENGTH: (0, 3),
}


class ControlCode(IntEnum):
    OFF = 0
    ON = 1


class Confirmation(Enum):
    """Semantic meaning of a confirmation code, resolved per instruction"""
    SUCCESS = 'success'
    RECEIVE_ERROR = 'receive_error'
    FINGER_DETECTED = 'finger_detected'
    FINGER_UNDETECTED = 'finger_undetected'
    FINGER_COLLECTION_FAILED = 'finger_collection_failed'
    DISORDERLY_IMAGE = 'disorderly_image'
    LACKING_CHARACTER_POINTS = 'lacking_character_points'
    LACKING_VALID_IMAGE = 'lacking_valid_image'
    NOT_MATCH = 'not_match'
    SEARCH_FOUND = 'search_found'
    SEARCH_NOT_FOUND = 'search_not_found'
    COMBINE_FAILED = 'combine_failed'
    ADDRESS_BEYOND_LIBRARY = 'address_beyond_library'
    TEMPLATE_READ_FAILED = 'template_read_failed'
    TEMPLATE_UPLOAD_FAILED = 'template_upload_failed'
    DATA_PACKET_TRANSFER_FAILED = 'data_packet_transfer_failed'
    IMAGE_UPLOAD_FAILED = 'image_upload_failed'
    DELETE_TEMPLATE_FAILED = 'delete_template_failed'
    EMPTY_FAILED = 'empty_failed'
    COMMUNICATION_FAIL = 'communication_fail'
    WRONG_PASSWORD = 'wrong_password'
    WRONG_REGISTER_NUMBER = 'wrong_register_number'
    FLASH_WRITE_FAILED = 'flash_write_failed'
    UNKNOWN = 'unknown'


# Confirmations that count as a positive outcome of their command
POSITIVE = frozenset({
    Confirmation.SUCCESS,
    Confirmation.FINGER_DETECTED,
    Confirmation.SEARCH_FOUND,
})

_BASE = {
    0x00: Confirmation.SUCCESS,
    0x01: Confirmation.RECEIVE_ERROR,
}

_CHARACTER_FAILURES = {
    0x06: Confirmation.DISORDERLY_IMAGE,
    0x07: Confirmation.LACKING_CHARACTER_POINTS,
    0x15: Confirmation.LACKING_VALID_IMAGE,
}

_SEARCH = {
    0x00: Confirmation.SEARCH_FOUND,
    0x01: Confirmation.RECEIVE_ERROR,
    0x09: Confirmation.SEARCH_NOT_FOUND,
}

CONFIRMATIONS = {
    Instruction.HANDSHAKE: {**_BASE, 0x1D: Confirmation.COMMUNICATION_FAIL},
    Instruction.VERIFY_PASSWORD: {**_BASE, 0x13: Confirmation.WRONG_PASSWORD},
    Instruction.SET_PASSWORD: dict(_BASE),
    Instruction.SET_MODULE_ADDRESS: dict(_BASE),
    Instruction.SET_SYSTEM_PARAMETER: {**_BASE, 0x1A: Confirmation.WRONG_REGISTER_NUMBER},
    Instruction.PORT_CONTROL: {**_BASE, 0x1D: Confirmation.COMMUNICATION_FAIL},
    Instruction.READ_SYSTEM_PARAMETERS: dict(_BASE),
    Instruction.TEMPLATE_NUM: dict(_BASE),
    Instruction.READ_INDEX_TABLE: dict(_BASE),
    Instruction.GENERATE_IMAGE: {
        0x00: Confirmation.FINGER_DETECTED,
        0x01: Confirmation.RECEIVE_ERROR,
        0x02: Confirmation.FINGER_UNDETECTED,
        0x03: Confirmation.FINGER_COLLECTION_FAILED,
    },
    Instruction.GENERATE_CHARACTER_FILE: {**_BASE, **_CHARACTER_FAILURES},
    Instruction.GENERATE_TEMPLATE: {**_BASE, 0x0A: Confirmation.COMBINE_FAILED},
    Instruction.MATCH: {**_BASE, 0x08: Confirmation.NOT_MATCH},
    Instruction.SEARCH: dict(_SEARCH),
    Instruction.IDENTIFY: {**_SEARCH, **_CHARACTER_FAILURES},
    Instruction.AUTO_SEARCH: {**_SEARCH, **_CHARACTER_FAILURES},
    Instruction.UPLOAD_TEMPLATE: {**_BASE, 0x0D: Confirmation.TEMPLATE_UPLOAD_FAILED},
    Instruction.DOWNLOAD_TEMPLATE: {**_BASE, 0x0E: Confirmation.DATA_PACKET_TRANSFER_FAILED},
    Instruction.UPLOAD_IMAGE: {**_BASE, 0x0F: Confirmation.IMAGE_UPLOAD_FAILED},
    Instruction.DOWNLOAD_IMAGE: {**_BASE, 0x0E: Confirmation.DATA_PACKET_TRANSFER_FAILED},
    Instruction.STORE_TEMPLATE: {
        **_BASE,
        0x0B: Confirmation.ADDRESS_BEYOND_LIBRARY,
        0x18: Confirmation.FLASH_WRITE_FAILED,
    },
    Instruction.READ_TEMPLATE: {
        **_BASE,
        0x0B: Confirmation.ADDRESS_BEYOND_LIBRARY,
        0x0C: Confirmation.TEMPLATE_READ_FAILED,
    },
    Instruction.DELETE_TEMPLATE: {**_BASE, 0x10: Confirmation.DELETE_TEMPLATE_FAILED},
    Instruction.EMPTY_FINGER_LIBRARY: {**_BASE, 0x11: Confirmation.EMPTY_FAILED},
    Instruction.GET_RANDOM_CODE: dict(_BASE),
    Instruction.WRITE_NOTEPAD: {**_BASE, 0x18: Confirmation.FLASH_WRITE_FAILED},
    Instruction.READ_NOTEPAD: dict(_BASE),
}

# Total bytes of the acknowledge packet each instruction answers with
RESPONSE_LENGTHS = {
    Instruction.MATCH: 14,
    Instruction.TEMPLATE_NUM: 14,
    Instruction.SEARCH: 16,
    Instruction.IDENTIFY: 16,
    Instruction.AUTO_SEARCH: 16,
    Instruction.GET_RANDOM_CODE: 16,
    Instruction.READ_SYSTEM_PARAMETERS: 28,
    Instruction.READ_INDEX_TABLE: 44,
    Instruction.READ_NOTEPAD: 44,
}
ACK_LENGTH = 12


def response_length(instruction: Instruction) -> int:
    return RESPONSE_LENGTHS.get(instruction, ACK_LENGTH)


def resolve_confirmation(instruction: Instruction, code: int) -> Confirmation:
    """Map a raw confirmation code to its meaning for the issuing instruction

    Arguments:
        instruction {Instruction}
        code {int}

    Returns:
        Confirmation
    """
    return CONFIRMATIONS[instruction].get(code, Confirmation.UNKNOWN)


class SensorStatus(Enum):
    FREE = 'free'
    BUSY = 'busy'


class Stage(Enum):
    SCAN = 'scan'
    SEARCH = 'search'
    PROBE_DUPLICATE = 'probe_duplicate'
    DEBOUNCE_WAIT = 'debounce_wait'
    RESCAN = 'rescan'
    VERIFY_MATCH = 'verify_match'
    COMMIT = 'commit'
    DONE = 'done'
    CANCELLED = 'cancelled'


class Outcome(Enum):
    COMPLETED = 'completed'
    FAILED = 'failed'
    DUPLICATE = 'duplicate'
    FINGER_UNDETECTED = 'finger_undetected'
    CANCELLED = 'cancelled'
