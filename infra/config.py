from __future__ import annotations
import yaml
from dataclasses import dataclass
from pathlib import Path


RAIZ_PROYECTO = Path(__file__).resolve().parent.parent


@dataclass(frozen=True)
class ConciliacionConfig:
    tolerancia_eur_default: float
    ausente_como_cero: bool
    limite_severidad_error: float


@dataclass(frozen=True)
class LecturaConfig:
    filas_busqueda_encabezado: int
    min_coincidencias_encabezado: int
    filas_muestra_nif: int
    csv_encodings: list[str]
    csv_separadores: list[str]


@dataclass(frozen=True)
class ReporteConfig:
    ancho_linea: int
    formato_fecha: str
    tasa_minima_revision: float
    max_fuera_tolerancia_revision: int


@dataclass(frozen=True)
class LoggingConfig:
    nivel: str
    formato: str


@dataclass(frozen=True)
class Config:
    conciliacion: ConciliacionConfig
    lectura: LecturaConfig
    reporte: ReporteConfig
    logging: LoggingConfig


def load_config(path: str | Path | None = None) -> Config:
    """Carga config.yaml; sin ruta explícita se usa el de la raíz del proyecto."""
    if path is None:
        path = RAIZ_PROYECTO / "config.yaml"
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    conc = ConciliacionConfig(**data["conciliacion"])
    lec = LecturaConfig(**data["lectura"])
    rep = ReporteConfig(**data["reporte"])
    log = LoggingConfig(**data["logging"])

    return Config(conciliacion=conc, lectura=lec, reporte=rep, logging=log)
