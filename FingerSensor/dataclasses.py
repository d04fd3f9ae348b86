from dataclasses import dataclass, field, is_dataclass, asdict
from enum import Enum
from json import JSONEncoder, loads, dumps
from typing import List, Optional
from .enums import PacketKind, Instruction, Confirmation, POSITIVE, Stage, Outcome
from .exceptions import ReceiveError, CommunicationFail, WrongPassword, WrongRegisterNumber, \
    AddressBeyondLibrary, FlashError, DeleteTemplateFail, EmptyFail, CharacteristicsMismatch, ImageError, \
    TransferFail, TemplateReadError, NoTemplateFound, UnknownError


class EnhancedJSONEncoder(JSONEncoder):

    def default(self, o):
        if is_dataclass(o):
            return asdict(o)

        if isinstance(o, Enum):
            return o.name

        if isinstance(o, (bytes, bytearray)):
            return o.hex()

        return super().default(o)


class DataClass:

    def to_json(self, include: list = None, exclude: list = None) -> dict:
        """Convert dataclass to json

        Keyword Arguments:
            include {list} -- (default: {None})
            exclude {list} -- (default: {None})

        Returns:
            dict
        """

        data = loads(dumps(self, cls=EnhancedJSONEncoder))

        _exclude = exclude or []

        if include:
            result_fields = {}
            for field_name in include:
                result_fields[field_name] = data.get(field_name)
            return result_fields

        for excluded_field in _exclude:
            data.pop(excluded_field, None)

        return data


_DEVICE_ERRORS = {
    Confirmation.RECEIVE_ERROR: ReceiveError,
    Confirmation.COMMUNICATION_FAIL: CommunicationFail,
    Confirmation.WRONG_PASSWORD: WrongPassword,
    Confirmation.WRONG_REGISTER_NUMBER: WrongRegisterNumber,
    Confirmation.ADDRESS_BEYOND_LIBRARY: AddressBeyondLibrary,
    Confirmation.FLASH_WRITE_FAILED: FlashError,
    Confirmation.DELETE_TEMPLATE_FAILED: DeleteTemplateFail,
    Confirmation.EMPTY_FAILED: EmptyFail,
    Confirmation.COMBINE_FAILED: CharacteristicsMismatch,
    Confirmation.NOT_MATCH: CharacteristicsMismatch,
    Confirmation.FINGER_UNDETECTED: ImageError,
    Confirmation.FINGER_COLLECTION_FAILED: ImageError,
    Confirmation.DISORDERLY_IMAGE: ImageError,
    Confirmation.LACKING_CHARACTER_POINTS: ImageError,
    Confirmation.LACKING_VALID_IMAGE: ImageError,
    Confirmation.TEMPLATE_UPLOAD_FAILED: TransferFail,
    Confirmation.DATA_PACKET_TRANSFER_FAILED: TransferFail,
    Confirmation.IMAGE_UPLOAD_FAILED: TransferFail,
    Confirmation.TEMPLATE_READ_FAILED: TemplateReadError,
    Confirmation.SEARCH_NOT_FOUND: NoTemplateFound,
}


@dataclass
class Packet(DataClass):
    kind: PacketKind
    address: int
    confirmation_code: int
    payload: bytes = b''


@dataclass
class CommandResult(DataClass):
    instruction: Instruction
    confirmation_code: int
    confirmation: Confirmation

    @property
    def success(self) -> bool:
        return self.confirmation in POSITIVE

    def raise_for_status(self) -> None:
        """Raise the matching DeviceError unless the command succeeded

        Raises:
            DeviceError
        """
        if self.success:
            return

        error_class = _DEVICE_ERRORS.get(self.confirmation, UnknownError)
        raise error_class(self.instruction, self.confirmation_code, self.confirmation)


@dataclass
class SystemParameters(CommandResult):
    status_register: int = 0
    system_id: int = 0
    library_size: int = 0
    security_level: int = 0
    address: int = 0
    packet_length: int = 0
    baud_rate: int = 0

    @property
    def packet_size(self) -> int:
        """Data packet size in bytes (the length code selects 32, 64, 128 or 256)"""
        return 32 << self.packet_length

    @property
    def baud(self) -> int:
        return self.baud_rate * 9600


@dataclass
class TemplateCount(CommandResult):
    count: int = 0


@dataclass
class TemplateIndex(CommandResult):
    page: int = 0
    slots: List[bool] = field(default_factory=list)

    @property
    def occupied(self) -> List[int]:
        """Absolute positions of the stored templates on this page"""
        offset = self.page * len(self.slots)
        return [offset + i for i, used in enumerate(self.slots) if used]

    def first_free(self, limit: int = None) -> Optional[int]:
        """The first free absolute position on this page

        Keyword Arguments:
            limit {int} -- positions at or beyond this are ignored (default: {None})

        Returns:
            Optional[int]
        """
        offset = self.page * len(self.slots)
        for i, used in enumerate(self.slots):
            position = offset + i
            if limit is not None and position >= limit:
                break
            if not used:
                return position
        return None


@dataclass
class SearchResult(CommandResult):
    page_id: int = 0
    match_score: int = 0

    @property
    def found(self) -> bool:
        # A zero page id with a zero score is the module's "no match" answer
        return self.confirmation == Confirmation.SEARCH_FOUND and not (self.page_id == 0 and self.match_score == 0)


@dataclass
class MatchResult(CommandResult):
    match_score: int = 0


@dataclass
class StoreResult(CommandResult):
    buffer: int = 0
    position: int = 0


@dataclass
class RandomCode(CommandResult):
    value: int = 0


@dataclass
class Notepad(CommandResult):
    page: int = 0
    data: bytes = b''


@dataclass
class WorkflowResult(DataClass):
    stage: Stage
    outcome: Outcome
    result: Optional[CommandResult] = None
    page_id: Optional[int] = None
    match_score: Optional[int] = None
    template_count: Optional[int] = None
    found: bool = False

    @property
    def completed(self) -> bool:
        return self.outcome == Outcome.COMPLETED
