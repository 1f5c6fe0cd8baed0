"""Pytest configuration and shared fixtures."""

import asyncio
from datetime import datetime

import pytest

from sheetgate.related_data import RelatedDataLoader
from sheetgate.schemas import default_registry
from sheetgate.validators import DataValidator

NOW = datetime(2024, 6, 15, 10, 30)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays and yields to the loop instead of waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class InMemorySource:
    """RecordSource backed by a dict of table name -> rows."""

    def __init__(self, tables=None):
        self.tables = tables or {}
        self.calls = []
        self.failing = set()

    async def list_records(self, table):
        self.calls.append(table)
        if table in self.failing:
            raise RuntimeError(f"{table} unavailable")
        return [dict(row) for row in self.tables.get(table, [])]


def sample_tables():
    return {
        "Usuarios": [
            {"id": "u1", "email": "ana@example.com", "nombre": "Ana", "rol": "admin", "activo": True},
            {"id": "u2", "email": "luis@example.com", "nombre": "Luis", "rol": "tecnico", "activo": True},
            {"id": "u3", "email": "old@example.com", "nombre": "Old", "rol": "admin", "activo": False},
        ],
        "Clientes": [
            {"id": "c1", "ruc": "20100047218", "razon_social": "Acme SAC", "activo": True},
            {"id": "c2", "ruc": "20100047218", "razon_social": "Gone SAC", "activo": False},
        ],
        "Proyectos": [
            {
                "id": "p1",
                "codigo": "PRY-0001",
                "nombre": "Main project",
                "cliente_id": "c1",
                "responsable_id": "u1",
                "inicio_plan": "2024-01-01",
                "fin_plan": "2024-12-31",
            },
        ],
        "Actividades": [
            {"id": "a1", "proyecto_id": "p1", "codigo": "PRY-0001-001", "titulo": "Wiring"},
        ],
        "Materiales": [
            {
                "id": "MAT-001",
                "sku": "MAT-001",
                "descripcion": "Copper cable",
                "stock_actual": 5,
                "stock_minimo": 10,
                "activo": True,
            },
            {"id": "MAT-002", "sku": "MAT-002", "stock_actual": 100, "activo": False},
        ],
        "BOM": [],
        "Personal": [
            {"id": "t1", "dni_ruc": "12345678", "nombres": "Juan Perez", "activo": True},
        ],
        "RegistroHoras": [
            {
                "id": "h1",
                "colaborador_id": "t1",
                "proyecto_id": "p1",
                "actividad_id": "a1",
                "fecha": "2024-06-14",
                "horas_trabajadas": 8,
            },
        ],
        "Asignaciones": [
            {"colaborador_id": "t1", "proyecto_id": "p1", "actividad_id": "a1", "activo": True},
        ],
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def source():
    return InMemorySource(sample_tables())


@pytest.fixture
def loader(source, clock):
    return RelatedDataLoader(source, ttl=300.0, clock=clock)


@pytest.fixture
def validator(loader):
    return DataValidator(default_registry(), loader, clock=lambda: NOW)
