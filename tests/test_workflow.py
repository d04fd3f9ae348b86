"""Tests for the staged procedures: scanning, enrollment, search and page listing."""

import threading

import pytest

from FingerSensor.enums import Confirmation, Instruction, Outcome, SensorStatus, Stage
from FingerSensor.exceptions import SensorIsBusy

from conftest import ack, index_page, system_parameters

NO_FINGER = ack(0x02)
FINGER = ack(0x00)
NO_MATCH = ack(0x09, b"\x00\x00\x00\x00")


def test_scan_finger_polls_until_detected(sensor, transport):
    transport.queue(NO_FINGER, NO_FINGER, FINGER)
    result = sensor.scan_finger()
    assert result.completed
    assert result.stage == Stage.SCAN
    assert result.result.confirmation == Confirmation.FINGER_DETECTED
    assert transport.instructions == [Instruction.GENERATE_IMAGE] * 3
    assert sensor.session.status == SensorStatus.FREE


def test_scan_finger_gives_up_after_max_attempts(sensor, transport):
    transport.repeat = NO_FINGER
    result = sensor.scan_finger(max_attempts=4)
    assert result.outcome == Outcome.FINGER_UNDETECTED
    assert len(transport.writes) == 4


def test_scan_finger_overall_timeout(sensor, transport):
    transport.repeat = NO_FINGER
    result = sensor.scan_finger(max_attempts=10000, interval=0.01, timeout=0.05)
    assert result.outcome == Outcome.FINGER_UNDETECTED
    assert len(transport.writes) < 10000


def test_scan_finger_collection_failure(sensor, transport):
    transport.queue(NO_FINGER, ack(0x03))
    result = sensor.scan_finger()
    assert result.outcome == Outcome.FAILED
    assert result.result.confirmation == Confirmation.FINGER_COLLECTION_FAILED


def test_enroll_stores_at_first_free_position(sensor, transport):
    transport.queue(
        FINGER, ack(0x00),                  # first scan and extraction
        system_parameters(library_size=200),
        NO_MATCH,                           # duplicate probe
        FINGER, ack(0x00),                  # second scan and extraction
        ack(0x00, b"\x00\x50"),             # match
        ack(0x00),                          # merge
        index_page([0]),
        ack(0x00),                          # store
        ack(0x00, b"\x00\x02"),             # template count
    )
    result = sensor.enroll()

    assert result.completed
    assert result.stage == Stage.DONE
    assert result.page_id == 1
    assert result.match_score == 0x50
    assert result.template_count == 2
    assert transport.instructions == [
        Instruction.GENERATE_IMAGE,
        Instruction.GENERATE_CHARACTER_FILE,
        Instruction.READ_SYSTEM_PARAMETERS,
        Instruction.SEARCH,
        Instruction.GENERATE_IMAGE,
        Instruction.GENERATE_CHARACTER_FILE,
        Instruction.MATCH,
        Instruction.GENERATE_TEMPLATE,
        Instruction.READ_INDEX_TABLE,
        Instruction.STORE_TEMPLATE,
        Instruction.TEMPLATE_NUM,
    ]
    # the two extractions go to different buffers
    assert transport.writes[1][10] == 0x01
    assert transport.writes[5][10] == 0x02


def test_enroll_rejects_duplicate_finger(sensor, transport):
    sensor.session.capacity = 200
    transport.queue(FINGER, ack(0x00), ack(0x00, b"\x00\x07\x00\x90"))
    result = sensor.enroll()

    assert result.outcome == Outcome.DUPLICATE
    assert result.stage == Stage.PROBE_DUPLICATE
    assert result.found
    assert result.page_id == 7
    assert Instruction.STORE_TEMPLATE not in transport.instructions


def test_enroll_stops_when_fingers_differ(sensor, transport):
    sensor.session.capacity = 200
    transport.queue(FINGER, ack(0x00), NO_MATCH, FINGER, ack(0x00), ack(0x08, b"\x00\x00"))
    result = sensor.enroll()

    assert result.outcome == Outcome.FAILED
    assert result.stage == Stage.VERIFY_MATCH
    assert result.result.confirmation == Confirmation.NOT_MATCH
    assert transport.instructions[-1] == Instruction.MATCH


def test_enroll_extraction_failure(sensor, transport):
    transport.queue(FINGER, ack(0x06))
    result = sensor.enroll()
    assert result.outcome == Outcome.FAILED
    assert result.stage == Stage.PROBE_DUPLICATE
    assert result.result.confirmation == Confirmation.DISORDERLY_IMAGE


def test_enroll_without_finger(sensor, transport):
    transport.repeat = NO_FINGER
    sensor.workflow.scan_attempts = 3
    result = sensor.enroll()
    assert result.outcome == Outcome.FINGER_UNDETECTED
    assert result.stage == Stage.PROBE_DUPLICATE


def test_enroll_with_full_library(sensor, transport):
    sensor.session.capacity = 2
    transport.queue(
        FINGER, ack(0x00), NO_MATCH, FINGER, ack(0x00), ack(0x00, b"\x00\x50"), ack(0x00), index_page([0, 1])
    )
    result = sensor.enroll()
    assert result.outcome == Outcome.FAILED
    assert result.stage == Stage.COMMIT
    assert Instruction.STORE_TEMPLATE not in transport.instructions


def test_search_workflow_found(sensor, transport):
    sensor.session.capacity = 200
    transport.queue(FINGER, ack(0x00), ack(0x00, b"\x00\x0C\x00\x64"))
    result = sensor.check_finger()
    assert result.completed
    assert result.found
    assert (result.page_id, result.match_score) == (12, 100)


def test_search_workflow_not_found(sensor, transport):
    sensor.session.capacity = 200
    transport.queue(FINGER, ack(0x00), ack(0x00, b"\x00\x00\x00\x00"))
    result = sensor.check_finger()
    assert result.completed
    assert not result.found
    assert result.result.confirmation == Confirmation.SEARCH_NOT_FOUND


def test_search_workflow_failure(sensor, transport):
    sensor.session.capacity = 200
    transport.queue(FINGER, ack(0x00), ack(0x01, b"\x00\x00\x00\x00"))
    result = sensor.check_finger()
    assert result.outcome == Outcome.FAILED
    assert result.stage == Stage.SEARCH


def test_second_workflow_is_rejected_while_busy(sensor):
    sensor.session.acquire()
    with pytest.raises(SensorIsBusy):
        sensor.enroll()
    sensor.session.release()


def test_cancel_stops_polling(sensor, transport):
    transport.repeat = NO_FINGER
    timer = threading.Timer(0.1, sensor.cancel)
    timer.start()
    try:
        result = sensor.scan_finger(max_attempts=100000, interval=0.01)
    finally:
        timer.cancel()

    assert result.outcome == Outcome.CANCELLED
    assert result.stage == Stage.CANCELLED
    assert sensor.session.status == SensorStatus.FREE


def test_list_pages(sensor, transport):
    transport.queue(index_page([0, 1, 33]))
    lines = sensor.list_pages(1).splitlines()
    assert lines[0] == "Page 1: 3/256 occupied"
    assert len(lines) == 1 + 256 // 32
    assert lines[1] == " 256 " + "##" + "." * 30
    assert lines[2] == " 288 " + "." + "#" + "." * 30


def test_list_pages_unreadable(sensor, transport):
    transport.queue(ack(0x01, bytes(32)))
    assert sensor.list_pages(0) == "Page 0: unreadable (RECEIVE_ERROR)"


def test_search_workflow_reports_unreadable_capacity(sensor, transport):
    transport.queue(FINGER, ack(0x00), ack(0x01, bytes(16)))
    result = sensor.check_finger()

    assert result.outcome == Outcome.FAILED
    assert result.stage == Stage.SEARCH
    assert result.result.instruction == Instruction.READ_SYSTEM_PARAMETERS
    assert result.result.confirmation == Confirmation.RECEIVE_ERROR
    assert Instruction.SEARCH not in transport.instructions
    assert sensor.session.status == SensorStatus.FREE


def test_enroll_reports_unreadable_capacity_while_probing(sensor, transport):
    transport.queue(FINGER, ack(0x00), ack(0x01, bytes(16)))
    result = sensor.enroll()

    assert result.outcome == Outcome.FAILED
    assert result.stage == Stage.PROBE_DUPLICATE
    assert result.result.instruction == Instruction.READ_SYSTEM_PARAMETERS
    assert sensor.session.status == SensorStatus.FREE


def test_enroll_reports_unreadable_index_page_while_committing(sensor, transport):
    sensor.session.capacity = 200
    transport.queue(
        FINGER, ack(0x00), NO_MATCH, FINGER, ack(0x00), ack(0x00, b"\x00\x50"), ack(0x00), ack(0x01, bytes(32))
    )
    result = sensor.enroll()

    assert result.outcome == Outcome.FAILED
    assert result.stage == Stage.COMMIT
    assert result.result.instruction == Instruction.READ_INDEX_TABLE
    assert result.result.confirmation_code == 0x01
    assert Instruction.STORE_TEMPLATE not in transport.instructions


def test_cancel_fails_command_in_flight(sensor, transport):
    """The module never answers, so only the cancel can end the pending image poll."""
    timer = threading.Timer(0.1, sensor.cancel)
    timer.start()
    try:
        result = sensor.scan_finger()
    finally:
        timer.cancel()

    assert result.outcome == Outcome.CANCELLED
    assert result.stage == Stage.CANCELLED
    assert transport.instructions == [Instruction.GENERATE_IMAGE]
    assert not sensor.channel.pending
    assert sensor.session.status == SensorStatus.FREE


def test_cancel_during_enroll_frees_the_sensor(sensor, transport):
    sensor.session.capacity = 200
    transport.queue(FINGER, ack(0x00))
    timer = threading.Timer(0.1, sensor.cancel)
    timer.start()
    try:
        result = sensor.enroll()
    finally:
        timer.cancel()

    assert result.outcome == Outcome.CANCELLED
    assert transport.instructions[-1] == Instruction.SEARCH
    assert sensor.session.status == SensorStatus.FREE


def test_cancel_list_pages(sensor, transport):
    timer = threading.Timer(0.1, sensor.cancel)
    timer.start()
    try:
        assert sensor.list_pages(0) == "Page 0: cancelled"
    finally:
        timer.cancel()
    assert sensor.session.status == SensorStatus.FREE
