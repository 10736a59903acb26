from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable

import pytest
from sqlalchemy.orm import Session, sessionmaker

from examharvest.core.config.models import AppConfig
from examharvest.core.errors import TransientStepError
from examharvest.core.extract.base import RawItem
from examharvest.core.site.base import SelectOption, SiteAdapter
from examharvest.persistence.db import create_db_engine, create_session_factory
from examharvest.persistence.models import Base


ALTERNATIVES_HTML = (
    "A) Uma lista encadeada<br>"
    "B) Uma fila de prioridade<br>"
    '<span style="color: #FF0000">C) Uma pilha Você marcou a alternativa ERRADA</span><br>'
    '<span style="color: #00A000">D) Uma árvore binária de busca CORRETA</span><br>'
    "E) Uma tabela hash<br>"
    "Semana: 3 / Nível de Dificuldade: Médio<br>"
    "Objetivo de Aprendizado: Reconhecer estruturas de dados"
)

PERIOD_2023 = SelectOption(value="2023", label="2023")
UNIT_ALGO = SelectOption(value="101", label="2023 - Algoritmos e Programação - P1")
UNIT_CALC = SelectOption(value="102", label="2023 - MAT001 - Cálculo I - P1")


def make_item(label: str) -> RawItem:
    return RawItem(
        label=label,
        statement=f"Enunciado da questão {label}: qual estrutura garante busca em O(log n)?",
        alternatives_html=ALTERNATIVES_HTML,
        justification="Justificativa sobre todas as alternativas (corretas e incorretas)\nA árvore é ordenada.",
        images=("https://cdn.example.org/figura.png",),
    )


@dataclass
class PortalScript:
    """What the fake portal shows, plus failure injection shared by every adapter built from it."""

    periods: list[SelectOption] = field(default_factory=lambda: [PERIOD_2023])
    units: dict[str, list[SelectOption]] = field(default_factory=lambda: {"2023": [UNIT_ALGO]})
    items: dict[str, list[str]] = field(default_factory=lambda: {"101": ["Q1", "Q2"]})
    initial_period: str = "2023"
    stuck_period: bool = False
    login_error: Exception | None = None
    read_failures: int = 0
    render_failures: dict[int, int] = field(default_factory=dict)
    select_failures: dict[str, int] = field(default_factory=dict)
    on_call: Callable[[str], Awaitable[None]] | None = None
    on_list_units: Callable[[], Awaitable[None]] | None = None

    opened: int = 0
    closed: int = 0
    reads: int = 0
    selected_units: list[str] = field(default_factory=list)
    forced_opens: list[int] = field(default_factory=list)

    def factory(self) -> Callable[[], "FakeSiteAdapter"]:
        return lambda: FakeSiteAdapter(self)


class FakeSiteAdapter(SiteAdapter):
    """In-memory portal driven by a PortalScript."""

    def __init__(self, script: PortalScript):
        self.script = script
        self._period = script.initial_period
        self._unit: str | None = None
        self._open_index: int | None = None
        self._render_attempts: dict[int, int] = {}

    @property
    def name(self) -> str:
        return "fake"

    async def open(self) -> None:
        self.script.opened += 1

    async def close(self) -> None:
        self.script.closed += 1

    async def _called(self, method: str) -> None:
        if self.script.on_call is not None:
            await self.script.on_call(method)

    async def open_login_page(self) -> None:
        await self._called("open_login_page")

    async def login(self, login: str, password: str, *, use_email_field: bool) -> None:
        await self._called("login")
        if self.script.login_error is not None:
            raise self.script.login_error

    async def open_entry_point(self) -> None:
        await self._called("open_entry_point")

    async def list_periods(self) -> list[SelectOption]:
        await self._called("list_periods")
        return [SelectOption(value="", label="SELECIONE ANO"), *self.script.periods]

    async def current_period(self) -> str:
        return self._period

    async def select_period(self, value: str) -> None:
        if not self.script.stuck_period:
            self._period = value

    async def list_units(self) -> list[SelectOption]:
        if self.script.on_list_units is not None:
            await self.script.on_list_units()
        return [
            SelectOption(value="", label="Selecione"),
            *self.script.units.get(self._period, []),
        ]

    async def select_unit(self, value: str) -> None:
        await self._called("select_unit")
        self.script.selected_units.append(value)
        remaining = self.script.select_failures.get(value, 0)
        if remaining:
            self.script.select_failures[value] = remaining - 1
            raise TransientStepError(f"Timeout selecionando prova {value}", step="PROCESSING")
        self._unit = value

    async def wait_for_items(self, timeout_ms: int) -> bool:
        return bool(self.script.items.get(self._unit or ""))

    async def list_items(self) -> list[str]:
        return list(self.script.items.get(self._unit or "", []))

    async def open_item(self, index: int, *, force: bool = False) -> None:
        if force:
            self.script.forced_opens.append(index)
        self._open_index = index

    async def wait_for_item_content(self, timeout_ms: int) -> bool:
        index = self._open_index or 0
        attempts = self._render_attempts.get(index, 0)
        self._render_attempts[index] = attempts + 1
        return attempts >= self.script.render_failures.get(index, 0)

    async def read_item(self, label: str) -> RawItem:
        await self._called("read_item")
        self.script.reads += 1
        if self.script.reads <= self.script.read_failures:
            raise TransientStepError(f"Timeout lendo {label}", step="PROCESSING")
        return make_item(label)


class RecordingSink:
    """ProgressSink stand-in that keeps every event."""

    def __init__(self) -> None:
        self.statuses: list[tuple[str, str]] = []
        self.records = []
        self.units = []
        self.closed = False

    async def emit_status(self, step, message: str) -> None:
        self.statuses.append((getattr(step, "value", step), message))

    async def emit_record(self, record) -> None:
        self.records.append(record)

    async def emit_unit_done(self, summary) -> None:
        self.units.append(summary)

    async def close(self) -> None:
        self.closed = True

    def steps(self) -> list[str]:
        return [step for step, _ in self.statuses]


@pytest.fixture
def script() -> PortalScript:
    return PortalScript()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig.model_validate(
        {
            "data_dir": str(tmp_path / "data"),
            "database": {"url": f"sqlite:///{tmp_path / 'test.db'}"},
            "logging": {"file": None, "rich_console": False},
            "retry": {"max_attempts": 3, "base_delay_seconds": 0, "persistence_max_wait_seconds": 0},
            "worker": {"cancel_poll_seconds": 0.05, "flush_every_records": 2},
            "security": {"encryption_key": "test-shared-secret"},
        }
    )


@pytest.fixture
def session_factory(tmp_path: Path) -> sessionmaker[Session]:
    engine = create_db_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
    Base.metadata.create_all(bind=engine)
    yield create_session_factory(engine)
    engine.dispose()
