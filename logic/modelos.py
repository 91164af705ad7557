from __future__ import annotations
import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Literal, Mapping

from logic.normalizacion import es_nif_resumen, nif_valido


TipoConciliacion = Literal["iva", "modelo10", "ambos"]
TIPOS_CONCILIACION: tuple[str, ...] = ("iva", "modelo10", "ambos")

# Estados de un par
EXACTO = "conciliado-exacto"
TOLERADO = "conciliado-tolerado"
DISCREPANTE = "conciliado-discrepante"
SIN_PAR_REFERENCIA = "sin-par-referencia"
SIN_PAR_EXTRAIDO = "sin-par-extraido"

Estado = Literal[
    "conciliado-exacto",
    "conciliado-tolerado",
    "conciliado-discrepante",
    "sin-par-referencia",
    "sin-par-extraido",
]

# Regla que formó el par: "referencia" (NIF + nº documento) o "importe" (NIF + total)
ReglaPar = Literal["referencia", "importe", "ninguna"]

CAMPOS_IVA: tuple[str, ...] = (
    "total",
    "base_normal",
    "base_intermedia",
    "base_reducida",
    "base_exenta",
    "iva_normal",
    "iva_intermedio",
    "iva_reducido",
)
CAMPOS_MODELO10: tuple[str, ...] = ("bruto", "retencion", "tasa_retencion")
CAMPOS_MONETARIOS: tuple[str, ...] = CAMPOS_IVA + CAMPOS_MODELO10 + ("liquido",)

CAMPOS_POR_TIPO: dict[str, tuple[str, ...]] = {
    "iva": CAMPOS_IVA,
    "modelo10": CAMPOS_MODELO10,
    "ambos": CAMPOS_IVA + CAMPOS_MODELO10,
}

ETIQUETAS_CAMPO: dict[str, str] = {
    "total": "Total",
    "base_normal": "Base 23%",
    "base_intermedia": "Base 13%",
    "base_reducida": "Base 6%",
    "base_exenta": "Isento",
    "iva_normal": "IVA 23%",
    "iva_intermedio": "IVA 13%",
    "iva_reducido": "IVA 6%",
    "bruto": "Valor Bruto",
    "retencion": "Retenção",
    "tasa_retencion": "Taxa Retenção",
    "liquido": "Valor Líquido",
}


@dataclass(frozen=True, kw_only=True)
class DocumentoFiscal:
    """Campos de identidad e importes comunes a ambos orígenes.

    Los importes ausentes son ``None``; la comparación decide si equivalen a 0.
    Los presentes han de ser finitos.
    """
    nif: str = ""                     # NIF canónico (9 dígitos) o vacío
    nombre: str = ""
    fecha: date | None = None
    referencia: str = ""              # nº de documento libre
    total: float | None = None
    base_normal: float | None = None       # 23%
    base_intermedia: float | None = None   # 13%
    base_reducida: float | None = None     # 6%
    base_exenta: float | None = None
    iva_normal: float | None = None
    iva_intermedio: float | None = None
    iva_reducido: float | None = None
    bruto: float | None = None
    retencion: float | None = None
    tasa_retencion: float | None = None
    liquido: float | None = None
    categoria: str = ""

    def __post_init__(self):
        for campo in CAMPOS_MONETARIOS:
            valor = getattr(self, campo)
            if valor is not None and not math.isfinite(valor):
                raise ValueError(f"{campo} não finito: {valor!r}")

    @property
    def nif_confiable(self) -> bool:
        return es_nif_resumen(self.nif) or nif_valido(self.nif)


@dataclass(frozen=True, kw_only=True)
class RegistroReferencia(DocumentoFiscal):
    fila: int                         # fila 1-based en la hoja (para avisos)

    @property
    def es_resumen(self) -> bool:
        return es_nif_resumen(self.nif)


@dataclass(frozen=True, kw_only=True)
class RegistroExtraido(DocumentoFiscal):
    archivo: str = ""                 # documento de origen
    confianza: float | None = None    # 0-100, solo informativo


@dataclass(frozen=True)
class ParConciliacion:
    referencia: RegistroReferencia | None
    extraido: RegistroExtraido | None
    estado: Estado
    deltas: Mapping[str, Decimal] = field(default_factory=dict)
    regla: ReglaPar = "ninguna"
    campos_sin_valor: tuple[str, ...] = ()  # informados de un solo lado

    @property
    def es_conciliado(self) -> bool:
        return self.referencia is not None and self.extraido is not None

    @property
    def nif_confiable(self) -> bool:
        registros = [r for r in (self.referencia, self.extraido) if r is not None]
        return all(r.nif_confiable for r in registros)


@dataclass(frozen=True)
class Resumen:
    total_referencia: int
    total_extraido: int
    exactos: int
    tolerados: int
    discrepantes: int
    sin_par_referencia: int
    sin_par_extraido: int

    @property
    def fuera_tolerancia(self) -> int:
        return self.discrepantes + self.sin_par_referencia + self.sin_par_extraido

    @property
    def tasa_conciliacion(self) -> float:
        """% de registros de referencia conciliados (exactos o tolerados)."""
        if self.total_referencia == 0:
            return 0.0
        return round((self.exactos + self.tolerados) / self.total_referencia * 100, 2)


@dataclass(frozen=True)
class ResultadoConciliacion:
    pares: tuple[ParConciliacion, ...]
    tipo: TipoConciliacion
    tolerancia: Decimal
    ausente_como_cero: bool = True

    def por_estado(self, estado: Estado) -> list[ParConciliacion]:
        return [p for p in self.pares if p.estado == estado]

    @property
    def resumen(self) -> Resumen:
        cuenta = {e: 0 for e in (EXACTO, TOLERADO, DISCREPANTE, SIN_PAR_REFERENCIA, SIN_PAR_EXTRAIDO)}
        for p in self.pares:
            cuenta[p.estado] += 1
        return Resumen(
            total_referencia=sum(1 for p in self.pares if p.referencia is not None),
            total_extraido=sum(1 for p in self.pares if p.extraido is not None),
            exactos=cuenta[EXACTO],
            tolerados=cuenta[TOLERADO],
            discrepantes=cuenta[DISCREPANTE],
            sin_par_referencia=cuenta[SIN_PAR_REFERENCIA],
            sin_par_extraido=cuenta[SIN_PAR_EXTRAIDO],
        )

    @property
    def es_delta_cero(self) -> bool:
        # "delta cero" exige igualdad al céntimo, no basta estar en tolerancia
        r = self.resumen
        return r.fuera_tolerancia == 0 and r.tolerados == 0


@dataclass(frozen=True)
class Discrepancia:
    fila: int | None
    nif: str
    campo: str
    valor_referencia: Decimal
    valor_extraido: Decimal
    delta: Decimal
    severidad: Literal["aviso", "erro"]


@dataclass(frozen=True)
class TotalesIVA:
    iva_referencia: Decimal
    iva_extraido: Decimal

    @property
    def delta(self) -> Decimal:
        return abs(self.iva_referencia - self.iva_extraido)


@dataclass(frozen=True)
class TotalesModelo10:
    bruto_referencia: Decimal
    bruto_extraido: Decimal
    retencion_referencia: Decimal
    retencion_extraido: Decimal
    nifs_referencia: int
    nifs_extraido: int

    @property
    def delta_bruto(self) -> Decimal:
        return abs(self.bruto_referencia - self.bruto_extraido)

    @property
    def delta_retencion(self) -> Decimal:
        return abs(self.retencion_referencia - self.retencion_extraido)


@dataclass(frozen=True)
class ResultadoLectura:
    registros: list[RegistroReferencia]
    avisos: list[str]
    tipo: TipoConciliacion = "iva"
    encabezados: list[str] = field(default_factory=list)
    fila_encabezado: int | None = None   # 1-based
    mapeo: dict[str, int] = field(default_factory=dict)

    @property
    def vacio(self) -> bool:
        return not self.registros
