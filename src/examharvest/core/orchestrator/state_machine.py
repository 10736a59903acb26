"""
Extraction state machine.

Drives one authenticated portal session through ordered phases:

    INIT -> AUTHENTICATE -> LOCATE_ENTRY_POINT -> DISCOVER_PERIODS
      -> per period: DISCOVER_UNITS
        -> per unit: DISCOVER_ITEMS -> per item: EXTRACT -> UNIT_DONE
      -> DONE

Phases are never revisited within one run; a failed run is restarted
from scratch by RetryExecutor with a fresh machine. Cancellation is
checked at every phase boundary and around every unit and item.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Iterable, Sequence, Union

from pydantic import EmailStr, TypeAdapter, ValidationError

from examharvest.core.config.models import Step
from examharvest.core.errors import ScrapeCancelledError, TransientStepError
from examharvest.core.extract.alternatives import parse_alternatives, strip_justification
from examharvest.core.extract.base import ExtractedRecord, UnitSummary
from examharvest.core.normalize.text import derive_subject_name
from examharvest.core.site.base import SelectOption, SiteAdapter

from .cancellation import CancellationToken

if TYPE_CHECKING:
    from examharvest.core.config.models import AppConfig

    from .sinks import ProgressSink

logger = logging.getLogger(__name__)


PERIOD_PLACEHOLDER = "SELECIONE ANO"
UNIT_PLACEHOLDER = "nenhum registro"

DEFAULT_ITEMS_TIMEOUT_MS = 10000
DEFAULT_ITEM_CONTENT_TIMEOUT_MS = 15000
DEFAULT_ITEM_RETRY_TIMEOUT_MS = 10000

_EMAIL = TypeAdapter(EmailStr)


class Phase(str, Enum):
    """Extraction phases, in execution order."""

    INIT = "INIT"
    AUTHENTICATE = "AUTHENTICATE"
    LOCATE_ENTRY_POINT = "LOCATE_ENTRY_POINT"
    DISCOVER_PERIODS = "DISCOVER_PERIODS"
    DISCOVER_UNITS = "DISCOVER_UNITS"
    DISCOVER_ITEMS = "DISCOVER_ITEMS"
    EXTRACT = "EXTRACT"
    UNIT_DONE = "UNIT_DONE"
    DONE = "DONE"
    FAILED = "FAILED"


# =============================================================================
# Events
# =============================================================================


@dataclass(frozen=True)
class StatusEvent:
    step: Step
    message: str


@dataclass(frozen=True)
class RecordEvent:
    record: ExtractedRecord


@dataclass(frozen=True)
class UnitDoneEvent:
    summary: UnitSummary


Event = Union[StatusEvent, RecordEvent, UnitDoneEvent]


@dataclass
class RunSummary:
    """Counters for one state machine run."""

    records: int = 0
    units_done: int = 0
    units_skipped: int = 0
    periods: int = 0
    cancelled: bool = False
    completed_units: list[str] = field(default_factory=list)


# =============================================================================
# Option filters
# =============================================================================


def is_email(login: str) -> bool:
    """Classify a login as an e-mail address or a plain user name."""
    try:
        _EMAIL.validate_python(login)
    except ValidationError:
        return False
    return True


def filter_periods(options: Iterable[SelectOption]) -> list[SelectOption]:
    """Drop placeholder period options, keeping page order."""
    return [
        opt
        for opt in options
        if opt.value and opt.label.strip().upper() != PERIOD_PLACEHOLDER
    ]


def filter_units(options: Iterable[SelectOption]) -> list[SelectOption]:
    """Drop empty and "no records" exam options, keeping page order."""
    return [
        opt
        for opt in options
        if opt.value and UNIT_PLACEHOLDER not in opt.label.lower()
    ]


# =============================================================================
# State machine
# =============================================================================


class ExtractionStateMachine:
    """Runs one extraction over one browsing session.

    A machine is single use. events() yields the run's events lazily and
    run() drives them into a ProgressSink. The adapter's session is
    released exactly once on every exit path, and a CLEANUP status follows
    the release on success and on failure.
    """

    def __init__(
        self,
        adapter: SiteAdapter,
        login: str,
        password: str,
        *,
        token: CancellationToken | None = None,
        processed_units: Iterable[str] = (),
        excluded_unit_markers: Sequence[str] = (),
        items_timeout_ms: int = DEFAULT_ITEMS_TIMEOUT_MS,
        item_content_timeout_ms: int = DEFAULT_ITEM_CONTENT_TIMEOUT_MS,
        item_retry_timeout_ms: int = DEFAULT_ITEM_RETRY_TIMEOUT_MS,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        """Initialize the machine.

        Args:
            adapter: Site adapter owning the browsing session
            login: User identifier (e-mail or user name)
            password: Plain-text password
            token: Cancellation token checked at boundaries
            processed_units: Exam labels already harvested for this owner
            excluded_unit_markers: Label substrings that are always skipped
            items_timeout_ms: Wait for the first question button
            item_content_timeout_ms: Wait for a question statement
            item_retry_timeout_ms: Wait after the forced re-select
            log: Logger to use (defaults to the module logger)
        """
        self.adapter = adapter
        self.login = login
        self.password = password
        self.token = token or CancellationToken()
        self.processed_units = frozenset(processed_units)
        self.excluded_unit_markers = tuple(excluded_unit_markers)
        self.items_timeout_ms = items_timeout_ms
        self.item_content_timeout_ms = item_content_timeout_ms
        self.item_retry_timeout_ms = item_retry_timeout_ms
        self.log = log or logger

        self.summary = RunSummary()
        self._phase = Phase.INIT
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        adapter: SiteAdapter,
        login: str,
        password: str,
        **kwargs,
    ) -> "ExtractionStateMachine":
        """Build a machine with timeouts and exclusions from configuration.

        Exam exclusions only apply in the dev environment.
        """
        markers = config.site.excluded_unit_markers if config.is_dev else ()
        return cls(
            adapter,
            login,
            password,
            excluded_unit_markers=markers,
            items_timeout_ms=config.browser.action_timeout_ms,
            **kwargs,
        )

    @property
    def phase(self) -> Phase:
        return self._phase

    def _enter(self, phase: Phase) -> None:
        self.token.raise_if_cancelled()
        self.log.debug(f"Phase {self._phase.value} -> {phase.value}")
        self._phase = phase

    # -------------------------------------------------------------------------
    # Drivers
    # -------------------------------------------------------------------------

    async def events(self) -> AsyncIterator[Event]:
        """Yield status, record and unit-done events of the run.

        Raises:
            ScrapeCancelledError: Cancellation observed at a boundary
            AuthenticationError: Credential rejected
            TransientStepError: A navigation or selection step failed
        """
        if self._started:
            raise RuntimeError("ExtractionStateMachine instances are single use")
        self._started = True

        self._enter(Phase.INIT)
        yield StatusEvent(Step.INIT, "🚀 Iniciando browser (Playwright)...")

        try:
            async with self.adapter.session():
                async for event in self._session_events():
                    yield event
        except Exception as e:
            self._phase = Phase.FAILED
            self.summary.cancelled = isinstance(e, ScrapeCancelledError)
            self.log.info(f"Run ended in phase failure: {e}")
            yield StatusEvent(Step.CLEANUP, "🧹 Fechando recursos...")
            raise

        yield StatusEvent(Step.CLEANUP, "🧹 Fechando recursos...")

    async def run(self, sink: ProgressSink) -> RunSummary:
        """Drive events() into ``sink`` and return the run summary."""
        async for event in self.events():
            if isinstance(event, StatusEvent):
                await sink.emit_status(event.step, event.message)
            elif isinstance(event, RecordEvent):
                await sink.emit_record(event.record)
            elif isinstance(event, UnitDoneEvent):
                await sink.emit_unit_done(event.summary)
        return self.summary

    # -------------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------------

    async def _session_events(self) -> AsyncIterator[Event]:
        adapter = self.adapter

        self._enter(Phase.AUTHENTICATE)
        yield StatusEvent(Step.NAVIGATE, "🚗 Navegando para a URL...")
        await adapter.open_login_page()
        self.token.raise_if_cancelled()

        yield StatusEvent(Step.LOGIN, "🔐 Autenticando...")
        await adapter.login(self.login, self.password, use_email_field=is_email(self.login))

        self._enter(Phase.LOCATE_ENTRY_POINT)
        yield StatusEvent(Step.NAVIGATE, "🚗 Indo para a página de provas...")
        await adapter.open_entry_point()
        yield StatusEvent(Step.NAVIGATE, "🚗 Página de provas aberta...")

        self._enter(Phase.DISCOVER_PERIODS)
        yield StatusEvent(Step.ANALYZING, "📅 Mapeando anos letivos disponíveis...")
        periods = filter_periods(await adapter.list_periods())
        self.log.info(f"Periods found: {', '.join(p.label for p in periods) or 'none'}")

        for period in periods:
            self.token.raise_if_cancelled()
            async for event in self._period_events(period):
                yield event

        self._enter(Phase.DONE)
        yield StatusEvent(Step.DONE, "🏁 Verificação de todos os anos concluída.")

    async def _period_events(self, period: SelectOption) -> AsyncIterator[Event]:
        adapter = self.adapter
        yield StatusEvent(Step.PROCESSING, f"📂 Verificando ano: {period.label}...")

        if await adapter.current_period() != period.value:
            await adapter.select_period(period.value)

        verified = await adapter.current_period()
        if verified != period.value:
            self.log.warning(f"Period {period.label} not selected, page kept {verified}")
            yield StatusEvent(
                Step.WARNING,
                f"❌ Falha ao mudar para o ano {period.label}. "
                f"O sistema manteve {verified}. Pulando ano...",
            )
            return

        self.summary.periods += 1
        self._enter(Phase.DISCOVER_UNITS)
        units = filter_units(await adapter.list_units())
        if not units:
            self.log.info(f"No exams in {period.label}")
            return

        yield StatusEvent(Step.FOUND, f"✅ Encontradas {len(units)} prova(s) em {period.label}")

        for unit in units:
            self.token.raise_if_cancelled()
            async for event in self._unit_events(period, unit):
                yield event
            self.token.raise_if_cancelled()

    def _skip_reason(self, unit: SelectOption) -> str | None:
        if any(marker in unit.label for marker in self.excluded_unit_markers):
            return f"⏭️ Pulando prova fora do escopo: {unit.label}"
        if unit.label in self.processed_units:
            return f"⏭️ Pulando prova já processada: {unit.label}"
        return None

    async def _unit_events(self, period: SelectOption, unit: SelectOption) -> AsyncIterator[Event]:
        adapter = self.adapter

        skip_reason = self._skip_reason(unit)
        if skip_reason:
            self.summary.units_skipped += 1
            yield StatusEvent(Step.SKIPPED, skip_reason)
            return

        self.log.info(f"Processing exam {unit.label} ({unit.value})")
        await adapter.select_unit(unit.value)

        self._enter(Phase.DISCOVER_ITEMS)
        if not await adapter.wait_for_items(self.items_timeout_ms):
            self.log.warning(f"No question buttons for {unit.label}")
            yield StatusEvent(
                Step.WARNING,
                f"⚠️ Questões não apareceram em {unit.label}. Prova vazia ou expirada.",
            )
            return

        subject_name = derive_subject_name(unit.label)
        total = len(await adapter.list_items())
        yield StatusEvent(Step.INFO, f"📝 Encontradas {total} questões para extrair.")

        extracted = 0
        for index in range(total):
            self.token.raise_if_cancelled()

            # The list is re-rendered after every click
            labels = await adapter.list_items()
            if index >= len(labels):
                break
            label = labels[index]

            yield StatusEvent(Step.PROCESSING, f"👉 Processando questão {label}...")
            self._enter(Phase.EXTRACT)
            record = await self._extract_item(index, label, subject_name, period, unit)
            self.token.raise_if_cancelled()

            extracted += 1
            self.summary.records += 1
            yield RecordEvent(record)

        self._enter(Phase.UNIT_DONE)
        self.summary.units_done += 1
        self.summary.completed_units.append(unit.label)
        yield StatusEvent(Step.EXAM_DONE, f"Exame {unit.label} processado.")
        yield UnitDoneEvent(
            UnitSummary(
                period=period.label,
                unit_id=unit.value,
                unit_label=unit.label,
                items=extracted,
            )
        )

    async def _extract_item(
        self,
        index: int,
        label: str,
        subject_name: str,
        period: SelectOption,
        unit: SelectOption,
    ) -> ExtractedRecord:
        adapter = self.adapter

        await adapter.open_item(index)
        if not await adapter.wait_for_item_content(self.item_content_timeout_ms):
            self.log.warning(f"Statement of {label} did not render, selecting again")
            await adapter.open_item(index, force=True)
            if not await adapter.wait_for_item_content(self.item_retry_timeout_ms):
                raise TransientStepError(
                    f"Enunciado não carregou para a questão {label}",
                    step=Step.PROCESSING.value,
                )

        raw = await adapter.read_item(label)
        parsed = parse_alternatives(raw.alternatives_html)

        return ExtractedRecord(
            item_label=label,
            subject_name=subject_name,
            statement=raw.statement.strip(),
            alternatives=parsed.alternatives,
            justification=strip_justification(raw.justification),
            metadata=parsed.metadata,
            images=raw.images,
            correct_letter=parsed.correct_letter,
            selected_letter=parsed.selected_letter,
            unit_label=unit.label,
            period=period.label,
        )
