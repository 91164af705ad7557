"""Frontera con los colaboradores externos.

Aquí se elige el parser (determinístico primero, alternativos como el de IA
después), se convierten a registros las salidas en dict de los servicios de
extracción y se encadena lectura -> conciliación -> informe.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Protocol, Sequence

from infra.logger import get_logger
from logic.conciliacion import conciliar
from logic.lectura import ParserDeterministico
from logic.modelos import (
    CAMPOS_MONETARIOS,
    RegistroExtraido,
    RegistroReferencia,
    ResultadoLectura,
    TipoConciliacion,
)
from logic.normalizacion import NIF_RESUMEN, canonizar_nif, coercer_fecha, parsear_importe
from logic.reporte import InformeAuditoria, generar_informe


log = get_logger("conciliador_fiscal.orquestacion")


class ParserReferencia(Protocol):
    def parsear(self, datos: bytes) -> ResultadoLectura:
        ...


def cargar_referencia(
    datos: bytes,
    alternativos: Sequence[ParserReferencia] = (),
    principal: ParserReferencia | None = None,
) -> ResultadoLectura:
    """Parser determinístico y, si no devuelve registros, cada alternativo en orden.

    Se conservan los avisos de todos los intentos.
    """
    parsers = [principal or ParserDeterministico(), *alternativos]
    avisos: list[str] = []
    resultado: ResultadoLectura | None = None
    for parser in parsers:
        resultado = parser.parsear(datos)
        avisos.extend(resultado.avisos)
        if not resultado.vacio:
            break
        log.info("%s sem registos, a tentar o parser seguinte", type(parser).__name__)

    return ResultadoLectura(
        registros=resultado.registros,
        avisos=avisos,
        tipo=resultado.tipo,
        encabezados=resultado.encabezados,
        fila_encabezado=resultado.fila_encabezado,
        mapeo=resultado.mapeo,
    )


# ==========================================================
# Salidas externas (dict) -> registros
# ==========================================================
CLAVES_EXTERNAS: dict[str, str] = {
    "total_amount": "total",
    "base_standard": "base_normal",
    "base_intermediate": "base_intermedia",
    "base_reduced": "base_reducida",
    "base_exempt": "base_exenta",
    "vat_standard": "iva_normal",
    "vat_intermediate": "iva_intermedio",
    "vat_reduced": "iva_reducido",
    "gross_amount": "bruto",
    "withholding_amount": "retencion",
    "withholding_rate": "tasa_retencion",
    "net_amount": "liquido",
}
_CAMPO_A_CLAVE = {campo: clave for clave, campo in CLAVES_EXTERNAS.items()}


def _importe_externo(fila: Mapping, campo: str) -> float | None:
    valor = fila.get(_CAMPO_A_CLAVE[campo], fila.get(campo))
    try:
        return parsear_importe(valor)
    except ValueError:
        log.warning("Valor %r ignorado em %s", valor, campo)
        return None


def _comunes(fila: Mapping) -> dict:
    datos = {
        "nif": canonizar_nif(fila.get("nif")),
        "nombre": str(fila.get("name") or ""),
        "fecha": coercer_fecha(fila.get("date")),
        "referencia": str(fila.get("document_number") or ""),
        "categoria": str(fila.get("income_category") or ""),
    }
    for campo in CAMPOS_MONETARIOS:
        datos[campo] = _importe_externo(fila, campo)
    return datos


def registros_referencia_desde_dicts(filas: Iterable[Mapping]) -> list[RegistroReferencia]:
    """Registros de referencia a partir de la salida del parser de IA (fila = posición 1-based)."""
    return [RegistroReferencia(fila=i, **_comunes(f)) for i, f in enumerate(filas, start=1)]


def registros_extraidos_desde_dicts(filas: Iterable[Mapping]) -> list[RegistroExtraido]:
    """Registros extraídos a partir de la salida del clasificador por documento."""
    out = []
    for f in filas:
        confianza = f.get("confidence")
        try:
            confianza = parsear_importe(confianza)
        except ValueError:
            confianza = None
        out.append(RegistroExtraido(
            archivo=str(f.get("file_name") or ""),
            confianza=confianza,
            **_comunes(f),
        ))
    return out


def registro_resumen(
    nombre: str, base: float | None, iva: float | None, fila: int = 1
) -> RegistroReferencia:
    """Registro sintético para planillas de apuramento (solo totales).

    ``fila=1`` vale cuando se concilia solo; junto a registros leídos hay que
    pasar una fila posterior a la última para no repetir números de fila.
    """
    return RegistroReferencia(
        fila=fila,
        nif=NIF_RESUMEN,
        nombre=f"Apuramento {nombre}",
        total=base,
        base_normal=base,
        iva_normal=iva,
    )


# ==========================================================
# Flujo completo
# ==========================================================
def reconciliar_planilla(
    datos: bytes,
    extraidos: Iterable[RegistroExtraido],
    cliente: str | None = None,
    tipo: TipoConciliacion | None = None,
    tolerancia=None,
    alternativos: Sequence[ParserReferencia] = (),
    ano_fiscal: int | None = None,
    trimestre: int | None = None,
    generado_en: datetime | None = None,
) -> tuple[ResultadoLectura, InformeAuditoria]:
    """Lee la planilla, concilia y arma el informe. Los avisos de lectura pasan a notas."""
    lectura = cargar_referencia(datos, alternativos)
    tipo = tipo or lectura.tipo
    resultado = conciliar(lectura.registros, extraidos, tipo=tipo, tolerancia=tolerancia)
    informe = generar_informe(
        resultado,
        cliente=cliente,
        ano_fiscal=ano_fiscal,
        trimestre=trimestre,
        generado_en=generado_en,
        notas_extra=[f"Leitura: {aviso}" for aviso in lectura.avisos],
    )
    return lectura, informe
