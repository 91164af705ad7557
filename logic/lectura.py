from __future__ import annotations

import math
import re
import unicodedata
from numbers import Integral, Real
from typing import Iterable

import pandas as pd

from infra.config import LecturaConfig, load_config
from infra.logger import get_logger
from infra.planilla import leer_primera_hoja
from logic.modelos import (
    CAMPOS_MONETARIOS,
    RegistroReferencia,
    ResultadoLectura,
    TipoConciliacion,
)
from logic.normalizacion import (
    canonizar_nif,
    coercer_fecha,
    es_nif_resumen,
    nif_valido,
    parsear_importe,
)


_CFG = load_config()
log = get_logger("conciliador_fiscal.lectura")


# ==========================================================
# Tabla de sinónimos de cabecera
# ==========================================================
# Se evalúa en orden sobre la cabecera normalizada (minúsculas, sin tildes,
# "%" y "º" aplanados): cada columna se asigna al primer campo libre que
# coincida. Los patrones fuertes de NIF van antes que los de nombre y los
# débiles ("emitente") después, para que "NIF Fornecedor" sea NIF y
# "Nome Emitente" sea nombre.
SINONIMOS_ENCABEZADO: tuple[tuple[str, str], ...] = (
    ("nif", r"\bnif\b"),
    ("nif", r"\bnipc\b"),
    ("nif", r"contribuinte"),
    ("nif", r"\bn o contrib"),
    ("nif", r"\bfiscal\b"),
    ("tasa_retencion", r"\btaxa\b.*\b(retencao|ret|irs)\b"),
    ("tasa_retencion", r"^taxa$|percentagem"),
    ("retencion", r"retencao|retido|withholding"),
    ("retencion", r"\birs\b"),
    ("base_normal", r"(base|incidencia|tributavel|colectavel).*\b23\b"),
    ("base_normal", r"\bbase\b.*\bnormal\b"),
    ("base_intermedia", r"(base|incidencia|tributavel|colectavel).*\b13\b"),
    ("base_intermedia", r"\bbase\b.*\bintermedia\b"),
    ("base_reducida", r"(base|incidencia|tributavel|colectavel).*\b6\b"),
    ("base_reducida", r"\bbase\b.*\breduzida\b"),
    ("base_exenta", r"\bisent[oa]\b|\bexempt|\bsem iva\b|\bs iva\b|\bbase\b.*\b0\b"),
    ("iva_normal", r"\b(iva|i v a|imposto)\b.*\b23\b"),
    ("iva_intermedio", r"\b(iva|i v a|imposto)\b.*\b13\b"),
    ("iva_reducido", r"\b(iva|i v a|imposto)\b.*\b6\b"),
    ("bruto", r"\bbruto\b|\brendimento\b|\bgross\b|\biliquido\b"),
    ("liquido", r"\bliquido\b|\bnet\b|\ba receber\b"),
    ("total", r"^(?!.*\biva\b).*(\btotal\b|\bmontante\b|\bvlr\b)"),
    ("fecha", r"\bdata\b|\bdate\b|\bdt\b"),
    ("categoria", r"^tipo\b"),
    ("referencia", r"referencia|documento|\bdoc\b|\bfatura\b|\bfactura\b|\bnumero\b|^n o\b|^no\b"),
    ("nombre", r"\bnome\b|fornecedor|beneficiario|entidade|designacao|razao social|adquirente|\bcliente\b"),
    ("nif", r"\bemitente\b"),
    ("categoria", r"categoria|category|\btipo\b|classif"),
)

_SINONIMOS_COMPILADOS = tuple((campo, re.compile(p)) for campo, p in SINONIMOS_ENCABEZADO)
_LARGO_MAX_CABECERA = 50


def _clave(texto) -> str:
    """Forma normalizada para comparar cabeceras: sin tildes, minúsculas, alfanumérico."""
    t = unicodedata.normalize("NFKD", str(texto).replace("\ufeff", ""))
    t = "".join(ch for ch in t if not unicodedata.combining(ch)).lower()
    t = re.sub(r"[^0-9a-z]+", " ", t)
    return re.sub(r"\s+", " ", t).strip()


def _es_celda_vacia(valor) -> bool:
    if valor is None or valor is pd.NA or valor is pd.NaT:
        return True
    if isinstance(valor, float) and math.isnan(valor):
        return True
    return isinstance(valor, str) and not valor.strip()


def _texto(valor) -> str:
    """Texto de la celda sin sufijos `.0` cuando proviene de números."""
    if _es_celda_vacia(valor):
        return ""
    if isinstance(valor, str):
        return valor.strip()
    if isinstance(valor, Integral):
        return str(int(valor))
    if isinstance(valor, Real):
        numero = float(valor)
        if math.isfinite(numero) and numero.is_integer():
            return str(int(numero))
    return str(valor).strip()


def campo_de_cabecera(cabecera) -> str | None:
    """Primer campo de la tabla de sinónimos que reconoce la cabecera."""
    clave = _clave(cabecera)
    if not clave:
        return None
    for campo, patron in _SINONIMOS_COMPILADOS:
        if patron.search(clave):
            return campo
    return None


def mapear_columnas(encabezados: Iterable) -> dict[str, int]:
    """Mapea cada campo conocido al índice de su columna (gana la primera)."""
    mapeo: dict[str, int] = {}
    for idx, cabecera in enumerate(encabezados):
        clave = _clave(cabecera) if not _es_celda_vacia(cabecera) else ""
        if not clave or len(clave) > _LARGO_MAX_CABECERA:
            continue
        for campo, patron in _SINONIMOS_COMPILADOS:
            if campo in mapeo:
                continue
            if patron.search(clave):
                mapeo[campo] = idx
                break
    return mapeo


def detectar_encabezado(df: pd.DataFrame, tope: int = 10, minimo: int = 2) -> int | None:
    """
    Detecta la fila que más probablemente corresponde al encabezado.

    Parámetros
    ----------
    df : pd.DataFrame
        Celdas crudas leídas con header=None.
    tope : int
        Cantidad máxima de filas a analizar desde arriba.
    minimo : int
        Celdas reconocidas necesarias para aceptar una fila como cabecera.

    Retorna
    -------
    int | None
        Índice (0-based) de la fila de cabecera, o None si ninguna alcanza el mínimo.
        Ante empate gana la primera fila.
    """
    fila_header, max_matches = None, 0
    tope = min(tope, len(df))

    for i in range(tope):
        matches = 0
        for valor in df.iloc[i]:
            if _es_celda_vacia(valor):
                continue
            texto = str(valor)
            if len(texto) >= _LARGO_MAX_CABECERA:
                continue
            if campo_de_cabecera(texto) is not None:
                matches += 1
        if matches >= minimo and matches > max_matches:
            max_matches, fila_header = matches, i

    return fila_header


def detectar_columna_nif(df: pd.DataFrame, fila_header: int, muestra: int = 15) -> int | None:
    """Columna con al menos 3 valores de 9 dígitos en las primeras filas de datos."""
    datos = df.iloc[fila_header + 1: fila_header + 1 + muestra]
    for col in range(df.shape[1]):
        nifs = sum(
            1 for valor in datos.iloc[:, col]
            if re.fullmatch(r"\d{9}", canonizar_nif(valor) or "")
        )
        if nifs >= 3:
            return col
    return None


def detectar_tipo_conciliacion(registros: Iterable[RegistroReferencia]) -> TipoConciliacion:
    """iva si hay columnas de IVA con datos, modelo10 si hay retenciones, ambos si hay las dos."""
    registros = list(registros)
    tiene_iva = any(
        r.iva_normal is not None or r.iva_intermedio is not None or r.iva_reducido is not None
        for r in registros
    )
    tiene_retencion = any(
        r.retencion is not None or r.tasa_retencion is not None for r in registros
    )
    if tiene_iva and tiene_retencion:
        return "ambos"
    if tiene_retencion:
        return "modelo10"
    return "iva"


# ==========================================================
# Conversión de filas
# ==========================================================
def _fila_a_registro(
    fila_valores: list,
    fila: int,
    mapeo: dict[str, int],
    encabezados: list[str],
    avisos: list[str],
) -> RegistroReferencia | None:
    def celda(campo: str):
        idx = mapeo.get(campo)
        if idx is None or idx >= len(fila_valores):
            return None
        return fila_valores[idx]

    nif_crudo = celda("nif")
    nif = canonizar_nif(nif_crudo)
    if not nif:
        avisos.append(f"Linha {fila}: sem NIF, linha ignorada")
        return None
    if len(nif) != 9:
        avisos.append(f'Linha {fila}: NIF inválido "{nif}" ({len(nif)} dígitos), linha ignorada')
        return None

    importes: dict[str, float | None] = {}
    for campo in CAMPOS_MONETARIOS:
        if campo not in mapeo:
            continue
        valor = celda(campo)
        try:
            importes[campo] = parsear_importe(valor)
        except ValueError:
            cabecera = encabezados[mapeo[campo]]
            avisos.append(
                f'Linha {fila}: valor inválido em "{cabecera}" ({_texto(valor)}), tratado como ausente'
            )
            importes[campo] = None

    if all(v is None for v in importes.values()):
        avisos.append(f"Linha {fila}: sem valores monetários, linha ignorada")
        return None

    if not es_nif_resumen(nif) and not nif_valido(nif):
        avisos.append(f"Linha {fila}: NIF {nif} falha dígito de controlo (incluído mesmo assim)")

    fecha = None
    if "fecha" in mapeo:
        valor = celda("fecha")
        fecha = coercer_fecha(valor)
        if fecha is None and not _es_celda_vacia(valor):
            avisos.append(f"Linha {fila}: data inválida ({_texto(valor)}), tratada como ausente")

    return RegistroReferencia(
        fila=fila,
        nif=nif,
        nombre=_texto(celda("nombre")),
        fecha=fecha,
        referencia=_texto(celda("referencia")),
        categoria=_texto(celda("categoria")),
        **importes,
    )


# ==========================================================
# Parser determinístico
# ==========================================================
class ParserDeterministico:
    """Lectura en dos fases: detectar cabecera, luego mapear columnas y filas.

    Nunca lanza por problemas de datos: un resultado vacío con avisos indica al
    orquestador que pruebe un parser alternativo.
    """

    def __init__(self, config: LecturaConfig | None = None):
        self.config = config or _CFG.lectura

    def parsear(self, datos: bytes) -> ResultadoLectura:
        if datos is None:
            raise TypeError("datos não pode ser None")

        try:
            df = leer_primera_hoja(datos)
        except ValueError as exc:
            log.warning("Planilha ilegível: %s", exc)
            return ResultadoLectura(registros=[], avisos=[f"Ficheiro ilegível: {exc}"])
        return self.parsear_dataframe(df)

    def parsear_dataframe(self, df: pd.DataFrame) -> ResultadoLectura:
        avisos: list[str] = []

        fila_header = detectar_encabezado(
            df, self.config.filas_busqueda_encabezado, self.config.min_coincidencias_encabezado
        )
        if fila_header is None:
            log.warning("Cabeçalho não detectado nas primeiras %s linhas", self.config.filas_busqueda_encabezado)
            avisos.append(
                f"Linha de cabeçalho não detectada nas primeiras "
                f"{self.config.filas_busqueda_encabezado} linhas"
            )
            return ResultadoLectura(registros=[], avisos=avisos)

        encabezados = [_texto(v) for v in df.iloc[fila_header]]
        mapeo = mapear_columnas(encabezados)
        log.info("Cabeçalho na linha %s; mapeamento: %s", fila_header + 1, mapeo)

        if "nif" not in mapeo:
            col = detectar_columna_nif(df, fila_header, self.config.filas_muestra_nif)
            if col is None:
                log.warning("Sem coluna de NIF; cabeçalhos: %s", encabezados)
                avisos.append("Coluna de NIF não detectada - verifique se a planilha tem coluna de NIF")
                return ResultadoLectura(
                    registros=[], avisos=avisos, encabezados=encabezados,
                    fila_encabezado=fila_header + 1, mapeo=mapeo,
                )
            nombre_col = encabezados[col] or f"Coluna {col + 1}"
            avisos.append(f'Coluna "{nombre_col}" detectada como NIF (pelos valores)')
            mapeo["nif"] = col

        registros: list[RegistroReferencia] = []
        for i in range(fila_header + 1, len(df)):
            valores = list(df.iloc[i])
            if all(_es_celda_vacia(v) for v in valores):
                continue
            registro = _fila_a_registro(valores, i + 1, mapeo, encabezados, avisos)
            if registro is not None:
                registros.append(registro)

        tipo = detectar_tipo_conciliacion(registros)
        log.info("Lidos %s registos (%s avisos), tipo %s", len(registros), len(avisos), tipo)
        return ResultadoLectura(
            registros=registros,
            avisos=avisos,
            tipo=tipo,
            encabezados=encabezados,
            fila_encabezado=fila_header + 1,
            mapeo=mapeo,
        )


def parsear_referencia(datos: bytes) -> ResultadoLectura:
    """Convierte los bytes de una planilla de referencia en registros normalizados."""
    return ParserDeterministico().parsear(datos)
