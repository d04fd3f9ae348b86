class FingerSensorError(Exception):
    pass


class ProtocolError(FingerSensorError):
    pass


class InvalidHeader(ProtocolError):
    pass


class InvalidIdentifier(ProtocolError):
    pass


class InvalidInstruction(ProtocolError):
    pass


class ChecksumMismatch(ProtocolError):
    pass


class LengthMismatch(ProtocolError):
    pass


class AddressMismatch(ProtocolError):
    pass


class ValidationError(FingerSensorError, ValueError):
    pass


class ParameterOutOfRange(ValidationError):
    pass


class InvalidCharacterBuffer(ValidationError):
    pass


class InvalidControlCode(ValidationError):
    pass


class InvalidPosition(ValidationError):
    pass


class DeviceError(FingerSensorError):

    def __init__(self, instruction, confirmation_code: int, confirmation) -> None:
        """A non-success confirmation returned by the module

        Arguments:
            instruction {Instruction} -- the issuing instruction
            confirmation_code {int} -- the raw status byte
            confirmation {Confirmation} -- its meaning for the instruction
        """
        self.instruction = instruction
        self.confirmation_code = confirmation_code
        self.confirmation = confirmation
        super().__init__(
            f'{instruction.name} failed with 0x{confirmation_code:02X} ({confirmation.name})'
        )


class ReceiveError(DeviceError):
    pass


class CommunicationFail(DeviceError):
    pass


class WrongPassword(DeviceError):
    pass


class WrongRegisterNumber(DeviceError):
    pass


class AddressBeyondLibrary(DeviceError):
    pass


class FlashError(DeviceError):
    pass


class DeleteTemplateFail(DeviceError):
    pass


class EmptyFail(DeviceError):
    pass


class CharacteristicsMismatch(DeviceError):
    pass


class ImageError(DeviceError):
    pass


class TransferFail(DeviceError):
    pass


class TemplateReadError(DeviceError):
    pass


class NoTemplateFound(DeviceError):
    pass


class UnknownError(DeviceError):
    pass


class TransportError(FingerSensorError):
    pass


class ChannelBusy(FingerSensorError):
    pass


class CommandTimeout(FingerSensorError):
    pass


class Cancelled(FingerSensorError):
    pass


class SensorIsBusy(FingerSensorError):
    pass


class NoAvailablePosition(FingerSensorError):
    pass
