"""Limpieza de valores compartida por la lectura y la conciliación.

Funciones puras: NIF, importes (redondeo al céntimo), fechas y nº de documento.
"""
from __future__ import annotations

import math
import re
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal, localcontext
from numbers import Integral, Real

import pandas as pd


NIF_RESUMEN = "999999999"  # marcador de filas de apuramento/resumen
_PRIMEROS_DIGITOS_NIF = set("12356789")
_PESOS_NIF = (9, 8, 7, 6, 5, 4, 3, 2)

CENTIMO = Decimal("0.01")
_EPOCA_EXCEL = date(1899, 12, 30)
_SERIAL_EXCEL_MAX = 2958465  # 31/12/9999


def _es_vacio(valor) -> bool:
    if valor is None or valor is pd.NA or valor is pd.NaT:
        return True
    if isinstance(valor, float) and math.isnan(valor):
        return True
    if isinstance(valor, str) and not valor.strip():
        return True
    return False


# ==========================================================
# NIF
# ==========================================================
def canonizar_nif(valor) -> str:
    """Devuelve el NIF solo con dígitos.

    - Números de Excel (``123456789.0``) pierden el sufijo decimal.
    - Se quita el prefijo de país ``PT`` y cualquier espacio/puntuación.
    - En celdas compuestas ("508332915 - Empresa") se toma el bloque de 9 dígitos.
    """
    if _es_vacio(valor):
        return ""
    if isinstance(valor, Integral) and not isinstance(valor, bool):
        return str(int(valor))
    if isinstance(valor, Real) and not isinstance(valor, bool):
        numero = float(valor)
        if math.isfinite(numero) and numero.is_integer():
            return str(int(numero))
        return ""

    texto = str(valor).strip().upper()
    texto = re.sub(r"^PT", "", texto)
    compacto = re.sub(r"[\s.\-/]", "", texto)
    if compacto.isdigit():
        return compacto
    aislado = re.search(r"(?<!\d)\d{9}(?!\d)", texto)
    if aislado:
        return aislado.group(0)
    return re.sub(r"\D", "", texto)


def nif_valido(nif: str) -> bool:
    """Dígito de control del NIF portugués (módulo 11)."""
    if not nif or len(nif) != 9 or not nif.isdigit():
        return False
    if nif[0] not in _PRIMEROS_DIGITOS_NIF:
        return False
    suma = sum(int(d) * p for d, p in zip(nif[:8], _PESOS_NIF))
    resto = suma % 11
    control = 0 if resto in (0, 1) else 11 - resto
    return control == int(nif[8])


def es_nif_resumen(nif: str) -> bool:
    return nif == NIF_RESUMEN


# ==========================================================
# Importes
# ==========================================================
def redondear(valor) -> Decimal:
    """Redondea a 2 decimales alejándose de cero en el medio (2.675 -> 2.68).

    Se parte de la representación decimal del número para no arrastrar
    artefactos binarios del float. ``None`` vale 0. Infinitos -> ``ValueError``.
    """
    if _es_vacio(valor):
        return Decimal("0.00")
    if isinstance(valor, Decimal):
        d = valor
    else:
        d = Decimal(repr(float(valor)) if isinstance(valor, float) else str(valor))
    if not d.is_finite():
        raise ValueError(f"Importe não finito: {valor!r}")
    with localcontext() as ctx:
        # precisión suficiente para los céntimos de importes muy grandes (1e30)
        ctx.prec = max(ctx.prec, d.adjusted() + 3)
        return d.quantize(CENTIMO, rounding=ROUND_HALF_UP)


def delta_importe(a, b) -> Decimal:
    ra, rb = redondear(a), redondear(b)
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, ra.adjusted() + 4, rb.adjusted() + 4)
        return abs(ra - rb)


_SIMBOLOS = re.compile(r"[€$£\s ]|EUR", re.IGNORECASE)


def parsear_importe(valor) -> float | None:
    """Convierte una celda a float.

    Acepta formato europeo (``1.234,56``), símbolos de moneda, negativos entre
    paréntesis o con signo final. Celda vacía -> ``None``; texto no numérico
    -> ``ValueError``.
    """
    if _es_vacio(valor):
        return None
    if isinstance(valor, bool):
        raise ValueError(f"Valor numérico inválido: {valor!r}")
    if isinstance(valor, (Integral, Real, Decimal)):
        numero = float(valor)
        if not math.isfinite(numero):
            raise ValueError(f"Valor numérico inválido: {valor!r}")
        return numero

    texto = _SIMBOLOS.sub("", str(valor))
    negativo = False
    if texto.startswith("(") and texto.endswith(")"):
        negativo, texto = True, texto[1:-1]
    if texto.endswith("-"):
        negativo, texto = True, texto[:-1]
    if texto.startswith("-"):
        negativo, texto = not negativo, texto[1:]
    texto = texto.lstrip("+")
    if not texto or not re.fullmatch(r"[0-9.,]+", texto):
        raise ValueError(f"Valor numérico inválido: {valor!r}")

    if "," in texto and "." in texto:
        # el último separador es el decimal
        if texto.rfind(",") > texto.rfind("."):
            texto = texto.replace(".", "").replace(",", ".")
        else:
            texto = texto.replace(",", "")
    elif "," in texto:
        if texto.count(",") > 1:
            texto = texto.replace(",", "")
        else:
            texto = texto.replace(",", ".")
    elif texto.count(".") > 1 or re.fullmatch(r"\d{1,3}\.\d{3}", texto):
        # 1.234.567 o 1.500 -> separador de miles pt-PT
        texto = texto.replace(".", "")

    try:
        numero = float(texto)
    except ValueError:
        raise ValueError(f"Valor numérico inválido: {valor!r}") from None
    if not math.isfinite(numero):
        raise ValueError(f"Valor numérico inválido: {valor!r}")
    return -numero if negativo else numero


# ==========================================================
# Fechas
# ==========================================================
_FECHA_PT = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})")


def coercer_fecha(valor) -> date | None:
    """Normaliza una celda a ``date``.

    Acepta fechas nativas, seriales de Excel, ``dd/mm/aaaa``, ``dd-mm-aaaa`` e
    ISO-8601. Lo que no se entienda es ``None`` (nunca la época 0).
    """
    if _es_vacio(valor):
        return None
    if isinstance(valor, datetime):
        return valor.date()
    if isinstance(valor, date):
        return valor
    if isinstance(valor, (Integral, Real)) and not isinstance(valor, bool):
        numero = float(valor)
        if not math.isfinite(numero) or not (1 <= numero <= _SERIAL_EXCEL_MAX):
            return None
        return _EPOCA_EXCEL + timedelta(days=int(numero))

    texto = str(valor).strip()
    m = _FECHA_PT.match(texto)
    if m:
        dia, mes, ano = (int(g) for g in m.groups())
        try:
            return date(ano, mes, dia)
        except ValueError:
            return None

    ts = pd.to_datetime(texto, format="ISO8601", errors="coerce")
    if pd.isna(ts):
        return None
    return ts.date()


# ==========================================================
# Referencias de documento
# ==========================================================
def normalizar_referencia(valor) -> str:
    """Nº de documento sin espacios y en minúsculas ("FT 2024/1" -> "ft2024/1")."""
    if _es_vacio(valor):
        return ""
    if isinstance(valor, Real) and not isinstance(valor, bool):
        numero = float(valor)
        if math.isfinite(numero) and numero.is_integer():
            valor = int(numero)
    return re.sub(r"\s+", "", str(valor)).casefold()
