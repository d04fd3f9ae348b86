from contextlib import contextmanager
from logging import getLogger
from time import monotonic
from typing import Optional
from .dataclasses import CommandResult, WorkflowResult
from .enums import CharBuffer, Confirmation, Stage, Outcome, PAGE_SIZE
from .exceptions import Cancelled, DeviceError, NoAvailablePosition


SLOTS_PER_LINE = 32


class Workflow:

    def __init__(self, sensor, scan_attempts: int = 50, scan_interval: float = 0.1, scan_timeout: float = None,
                 debounce_delay: float = 1.0) -> None:
        """Multi-command procedures built on the sensor commands

        Every procedure runs stage by stage and stops at the first stage whose command fails,
        reporting that stage and its command result.

        Arguments:
            sensor {FingerSensor}

        Keyword Arguments:
            scan_attempts {int} -- image polls before giving up (default: {50})
            scan_interval {float} -- seconds between polls (default: {0.1})
            scan_timeout {float} -- overall polling limit in seconds (default: {None})
            debounce_delay {float} -- pause between the two enrollment scans (default: {1.0})
        """
        self._logger = getLogger(__name__)
        self._sensor = sensor
        self._session = sensor.session
        self.scan_attempts = scan_attempts
        self.scan_interval = scan_interval
        self.scan_timeout = scan_timeout
        self.debounce_delay = debounce_delay
        self.stage: Optional[Stage] = None

    @contextmanager
    def _running(self):
        self._session.acquire()
        try:
            yield

        finally:
            self.stage = None
            self._session.release()

    def _enter(self, stage: Stage) -> None:
        self._logger.debug(f'Stage: {stage.name}')
        self.stage = stage

    def _abort(self, stage: Stage, outcome: Outcome, result: CommandResult = None, **details) -> WorkflowResult:
        if result is not None:
            self._logger.error(f'{stage.name} failed - {result.instruction.name}: {result.confirmation.name}')
        else:
            self._logger.error(f'{stage.name} failed - {outcome.name}')
        return WorkflowResult(stage=stage, outcome=outcome, result=result, **details)

    def _device_failure(self, stage: Stage, error: DeviceError) -> WorkflowResult:
        # Raised by a lookup the command depends on (system parameters, index pages)
        result = CommandResult(error.instruction, error.confirmation_code, error.confirmation)
        return self._abort(stage, Outcome.FAILED, result)

    def _cancelled(self) -> WorkflowResult:
        self._logger.debug(f'Cancelled during {self.stage.name if self.stage else "startup"}')
        return WorkflowResult(stage=Stage.CANCELLED, outcome=Outcome.CANCELLED)

    def _scan(self, stage: Stage, max_attempts: int = None, interval: float = None,
              timeout: float = None) -> WorkflowResult:
        max_attempts = self.scan_attempts if max_attempts is None else max_attempts
        interval = self.scan_interval if interval is None else interval
        timeout = self.scan_timeout if timeout is None else timeout

        self._enter(stage)
        started = monotonic()
        result = None

        for attempt in range(1, max_attempts + 1):
            if self._session.cancel_requested:
                return self._cancelled()

            result = self._sensor.generate_image()

            if result.confirmation == Confirmation.FINGER_DETECTED:
                self._logger.debug(f'Finger detected after {attempt} attempt(s)')
                return WorkflowResult(stage=stage, outcome=Outcome.COMPLETED, result=result)

            if result.confirmation != Confirmation.FINGER_UNDETECTED:
                return self._abort(stage, Outcome.FAILED, result)

            if timeout is not None and monotonic() - started >= timeout:
                break

            if attempt < max_attempts and self._session.wait_cancel(interval):
                return self._cancelled()

        self._logger.debug('No finger found')
        return WorkflowResult(stage=stage, outcome=Outcome.FINGER_UNDETECTED, result=result)

    def _extract(self, stage: Stage, buffer: CharBuffer) -> Optional[WorkflowResult]:
        scan = self._scan(stage)
        if not scan.completed:
            return scan

        result = self._sensor.generate_character_from_image(buffer)
        if not result.success:
            return self._abort(stage, Outcome.FAILED, result)

        return None

    def scan_finger(self, max_attempts: int = None, interval: float = None,
                    timeout: float = None) -> WorkflowResult:
        """Poll until a finger is on the sensor

        Keyword Arguments:
            max_attempts {int} -- (default: {scan_attempts})
            interval {float} -- seconds between polls (default: {scan_interval})
            timeout {float} -- seconds (default: {scan_timeout})

        Returns:
            WorkflowResult -- COMPLETED, FINGER_UNDETECTED when the poll ran out, or FAILED
        """
        with self._running():
            try:
                return self._scan(Stage.SCAN, max_attempts, interval, timeout)

            except Cancelled:
                return self._cancelled()

    def enroll(self) -> WorkflowResult:
        """Register a new finger at the first free position

        Returns:
            WorkflowResult -- DONE with the page id and the new template count, or the failed stage

        Raises:
            SensorIsBusy
        """
        self._logger.debug('Enrolling a new finger')

        with self._running():
            try:
                return self._enroll()

            except Cancelled:
                return self._cancelled()

    def _enroll(self) -> WorkflowResult:
        aborted = self._extract(Stage.PROBE_DUPLICATE, CharBuffer.ONE)
        if aborted:
            return aborted

        try:
            probe = self._sensor.search(CharBuffer.ONE)

        except DeviceError as e:
            return self._device_failure(Stage.PROBE_DUPLICATE, e)

        if probe.found:
            self._logger.debug(f'The finger is already stored at: {probe.page_id}')
            return self._abort(Stage.PROBE_DUPLICATE, Outcome.DUPLICATE, probe,
                               page_id=probe.page_id, match_score=probe.match_score, found=True)

        if probe.confirmation != Confirmation.SEARCH_NOT_FOUND:
            return self._abort(Stage.PROBE_DUPLICATE, Outcome.FAILED, probe)

        self._enter(Stage.DEBOUNCE_WAIT)
        if self._session.wait_cancel(self.debounce_delay):
            return self._cancelled()

        aborted = self._extract(Stage.RESCAN, CharBuffer.TWO)
        if aborted:
            return aborted

        self._enter(Stage.VERIFY_MATCH)
        match = self._sensor.check_match()
        if not match.success:
            return self._abort(Stage.VERIFY_MATCH, Outcome.FAILED, match, match_score=match.match_score)

        self._enter(Stage.COMMIT)
        merged = self._sensor.generate_template()
        if not merged.success:
            return self._abort(Stage.COMMIT, Outcome.FAILED, merged)

        try:
            stored = self._sensor.store_template(CharBuffer.ONE)

        except NoAvailablePosition:
            return self._abort(Stage.COMMIT, Outcome.FAILED)

        except DeviceError as e:
            return self._device_failure(Stage.COMMIT, e)

        if not stored.success:
            return self._abort(Stage.COMMIT, Outcome.FAILED, stored, page_id=stored.position)

        count = self._sensor.get_template_count()
        template_count = count.count if count.success else None

        self._logger.debug(f'Enrolled at: {stored.position} - templates: {template_count}')

        return WorkflowResult(stage=Stage.DONE, outcome=Outcome.COMPLETED, result=stored,
                              page_id=stored.position, match_score=match.match_score,
                              template_count=template_count)

    def search(self, start: int = 0, count: int = None) -> WorkflowResult:
        """Scan a finger and look it up in the library

        Keyword Arguments:
            start {int} -- first page id (default: {0})
            count {int} -- number of templates, the whole library when omitted (default: {None})

        Returns:
            WorkflowResult -- DONE with found, page_id and match_score, or the failed stage
        """
        self._logger.debug('Checking the finger')

        with self._running():
            try:
                aborted = self._extract(Stage.SCAN, CharBuffer.ONE)
                if aborted:
                    return aborted

                self._enter(Stage.SEARCH)
                result = self._sensor.search(CharBuffer.ONE, start=start, count=count)

            except Cancelled:
                return self._cancelled()

            except DeviceError as e:
                return self._device_failure(Stage.SEARCH, e)

        if result.confirmation not in (Confirmation.SEARCH_FOUND, Confirmation.SEARCH_NOT_FOUND):
            return self._abort(Stage.SEARCH, Outcome.FAILED, result)

        return WorkflowResult(stage=Stage.DONE, outcome=Outcome.COMPLETED, result=result,
                              page_id=result.page_id, match_score=result.match_score, found=result.found)

    def list_pages(self, page: int) -> str:
        """Render the occupancy of an index page, '#' for a stored template and '.' for a free slot

        Arguments:
            page {int}

        Returns:
            str
        """
        with self._running():
            try:
                index = self._sensor.get_template_index(page)

            except Cancelled:
                return f'Page {page}: cancelled'

        if not index.success:
            return f'Page {page}: unreadable ({index.confirmation.name})'

        lines = [f'Page {page}: {len(index.occupied)}/{len(index.slots)} occupied']
        offset = page * PAGE_SIZE
        for start in range(0, len(index.slots), SLOTS_PER_LINE):
            row = ''.join('#' if used else '.' for used in index.slots[start:start + SLOTS_PER_LINE])
            lines.append(f'{offset + start:4d} {row}')
        return '\n'.join(lines)
