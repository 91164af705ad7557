from __future__ import annotations
from collections import defaultdict
from decimal import Decimal, InvalidOperation
from typing import Iterable, Sequence

from infra.config import load_config
from infra.logger import get_logger
from logic.modelos import (
    CAMPOS_POR_TIPO,
    DISCREPANTE,
    EXACTO,
    SIN_PAR_EXTRAIDO,
    SIN_PAR_REFERENCIA,
    TIPOS_CONCILIACION,
    TOLERADO,
    Discrepancia,
    DocumentoFiscal,
    ParConciliacion,
    RegistroExtraido,
    RegistroReferencia,
    ResultadoConciliacion,
    TipoConciliacion,
    TotalesIVA,
    TotalesModelo10,
)
from logic.normalizacion import canonizar_nif, delta_importe, normalizar_referencia, redondear


_CFG = load_config()
log = get_logger("conciliador_fiscal.conciliacion")


def validar_tolerancia(tolerancia) -> Decimal:
    """La tolerancia debe ser un número finito y no negativo."""
    if isinstance(tolerancia, bool) or not isinstance(tolerancia, (int, float, Decimal)):
        raise ValueError(f"Tolerância inválida: {tolerancia!r}")
    try:
        tol = Decimal(str(tolerancia))
    except InvalidOperation:
        raise ValueError(f"Tolerância inválida: {tolerancia!r}") from None
    if not tol.is_finite() or tol < 0:
        raise ValueError(f"Tolerância inválida: {tolerancia!r}")
    return tol


def _importe_de_cotejo(
    r: DocumentoFiscal, e: DocumentoFiscal, tipo: TipoConciliacion
) -> tuple[float | None, float | None]:
    """Importe clave de la regla 2: bruto en Modelo 10, total en el resto.

    En iva/ambos, si ningún lado trae total se usa el bruto.
    """
    if tipo == "modelo10" or (r.total is None and e.total is None):
        return r.bruto, e.bruto
    return r.total, e.total


class _Comparador:
    """Compara pares referencia/extraído sobre los campos del tipo activo."""

    def __init__(self, campos: Sequence[str], tolerancia: Decimal, ausente_como_cero: bool):
        self.campos = campos
        self.tolerancia = tolerancia
        self.ausente_como_cero = ausente_como_cero

    def deltas(self, r: DocumentoFiscal, e: DocumentoFiscal) -> tuple[dict[str, Decimal], tuple[str, ...]]:
        deltas: dict[str, Decimal] = {}
        sin_valor: list[str] = []
        for campo in self.campos:
            a, b = getattr(r, campo), getattr(e, campo)
            deltas[campo] = delta_importe(a, b)
            if (a is None) != (b is None):
                sin_valor.append(campo)
        return deltas, tuple(sin_valor)

    def clasificar(self, deltas: dict[str, Decimal], sin_valor: tuple[str, ...]) -> str:
        if sin_valor and not self.ausente_como_cero:
            return DISCREPANTE
        if any(d > self.tolerancia for d in deltas.values()):
            return DISCREPANTE
        if all(d == 0 for d in deltas.values()):
            return EXACTO
        return TOLERADO


def conciliar(
    referencia: Iterable[RegistroReferencia],
    extraidos: Iterable[RegistroExtraido],
    tipo: TipoConciliacion = "iva",
    tolerancia=None,
    ausente_como_cero: bool | None = None,
) -> ResultadoConciliacion:
    """Empareja registros de referencia con extraídos (1 a 1) y clasifica cada par.

    Reglas, por prioridad:
      1. mismo NIF y mismo nº de documento (ambos informados);
      2. mismo NIF e importe dentro de tolerancia, si falta el nº de documento
         en alguno de los lados.
    Los empates se resuelven por menor delta total, luego menor fila de
    referencia y luego el extraído visto primero. No lanza por datos malos:
    lo que no se puede emparejar queda en los grupos ``sin-par-*``.
    """
    if referencia is None or extraidos is None:
        raise TypeError("referencia e extraidos são obrigatórios")
    if tipo not in TIPOS_CONCILIACION:
        raise ValueError(f"Tipo de reconciliação desconhecido: {tipo!r}")
    if tolerancia is None:
        tolerancia = _CFG.conciliacion.tolerancia_eur_default
    if ausente_como_cero is None:
        ausente_como_cero = _CFG.conciliacion.ausente_como_cero
    tol = validar_tolerancia(tolerancia)

    refs = list(referencia)
    exts = list(extraidos)
    comparador = _Comparador(CAMPOS_POR_TIPO[tipo], tol, ausente_como_cero)

    nif_r = [canonizar_nif(r.nif) for r in refs]
    nif_e = [canonizar_nif(e.nif) for e in exts]
    doc_r = [normalizar_referencia(r.referencia) for r in refs]
    doc_e = [normalizar_referencia(e.referencia) for e in exts]

    comparaciones: dict[tuple[int, int], tuple[dict[str, Decimal], tuple[str, ...]]] = {}

    def costo(i: int, j: int) -> Decimal:
        if (i, j) not in comparaciones:
            comparaciones[(i, j)] = comparador.deltas(refs[i], exts[j])
        return sum(comparaciones[(i, j)][0].values(), Decimal("0"))

    asignado_r: dict[int, tuple[int, str]] = {}
    usados_e: set[int] = set()

    def asignar(candidatos: list[tuple[Decimal, int, int, int]], regla: str) -> None:
        # (costo, fila, i, j): orden total => resultado reproducible
        for _, _, i, j in sorted(candidatos):
            if i in asignado_r or j in usados_e:
                continue
            asignado_r[i] = (j, regla)
            usados_e.add(j)

    # --- Regla 1: NIF + nº de documento ---
    idx_doc: dict[tuple[str, str], list[int]] = defaultdict(list)
    for j, e in enumerate(exts):
        if nif_e[j] and doc_e[j]:
            idx_doc[(nif_e[j], doc_e[j])].append(j)

    candidatos = []
    for i, r in enumerate(refs):
        if not nif_r[i] or not doc_r[i]:
            continue
        for j in idx_doc.get((nif_r[i], doc_r[i]), []):
            candidatos.append((costo(i, j), r.fila, i, j))
    asignar(candidatos, "referencia")

    # --- Regla 2: NIF + importe dentro de tolerancia ---
    idx_nif: dict[str, list[int]] = defaultdict(list)
    for j in range(len(exts)):
        if nif_e[j] and j not in usados_e:
            idx_nif[nif_e[j]].append(j)

    candidatos = []
    for i, r in enumerate(refs):
        if i in asignado_r or not nif_r[i]:
            continue
        for j in idx_nif.get(nif_r[i], []):
            if doc_r[i] and doc_e[j]:
                continue  # ambos con nº de documento distinto: no es el mismo documento
            a, b = _importe_de_cotejo(r, exts[j], tipo)
            if delta_importe(a, b) > tol:
                continue
            candidatos.append((costo(i, j), r.fila, i, j))
    asignar(candidatos, "importe")

    # --- Armado de pares, en orden de fila ---
    pares: list[ParConciliacion] = []
    for i in sorted(range(len(refs)), key=lambda k: (refs[k].fila, k)):
        r = refs[i]
        if i not in asignado_r:
            pares.append(ParConciliacion(referencia=r, extraido=None, estado=SIN_PAR_REFERENCIA))
            continue
        j, regla = asignado_r[i]
        deltas, sin_valor = comparaciones[(i, j)]
        pares.append(ParConciliacion(
            referencia=r,
            extraido=exts[j],
            estado=comparador.clasificar(deltas, sin_valor),
            deltas=deltas,
            regla=regla,
            campos_sin_valor=sin_valor,
        ))
    for j, e in enumerate(exts):
        if j not in usados_e:
            pares.append(ParConciliacion(referencia=None, extraido=e, estado=SIN_PAR_EXTRAIDO))

    resultado = ResultadoConciliacion(
        pares=tuple(pares),
        tipo=tipo,
        tolerancia=tol,
        ausente_como_cero=ausente_como_cero,
    )
    resumen = resultado.resumen
    log.info(
        "Reconciliação %s: %s referência / %s extraídos | exactos=%s tolerados=%s "
        "discrepantes=%s em falta=%s extra=%s | delta zero=%s",
        tipo, resumen.total_referencia, resumen.total_extraido, resumen.exactos,
        resumen.tolerados, resumen.discrepantes, resumen.sin_par_referencia,
        resumen.sin_par_extraido, resultado.es_delta_cero,
    )
    return resultado


def discrepancias(resultado: ResultadoConciliacion, limite_error=None) -> list[Discrepancia]:
    """Detalle por campo de los pares discrepantes (severidad erro por encima del límite)."""
    if limite_error is None:
        limite_error = _CFG.conciliacion.limite_severidad_error
    limite = Decimal(str(limite_error))

    out: list[Discrepancia] = []
    for p in resultado.por_estado(DISCREPANTE):
        for campo, delta in p.deltas.items():
            falta = campo in p.campos_sin_valor and not resultado.ausente_como_cero
            if delta <= resultado.tolerancia and not falta:
                continue
            out.append(Discrepancia(
                fila=p.referencia.fila,
                nif=p.referencia.nif,
                campo=campo,
                valor_referencia=redondear(getattr(p.referencia, campo)),
                valor_extraido=redondear(getattr(p.extraido, campo)),
                delta=delta,
                severidad="erro" if delta > limite else "aviso",
            ))
    return out


def _suma(valores: Iterable) -> Decimal:
    return sum((redondear(v) for v in valores), Decimal("0.00"))


def totales_iva(resultado: ResultadoConciliacion) -> TotalesIVA:
    """IVA total de toda la referencia frente a todo lo extraído."""
    refs = [p.referencia for p in resultado.pares if p.referencia is not None]
    exts = [p.extraido for p in resultado.pares if p.extraido is not None]
    campos = ("iva_normal", "iva_intermedio", "iva_reducido")
    return TotalesIVA(
        iva_referencia=_suma(getattr(r, c) for r in refs for c in campos),
        iva_extraido=_suma(getattr(e, c) for e in exts for c in campos),
    )


def totales_modelo10(resultado: ResultadoConciliacion) -> TotalesModelo10:
    refs = [p.referencia for p in resultado.pares if p.referencia is not None]
    exts = [p.extraido for p in resultado.pares if p.extraido is not None]
    return TotalesModelo10(
        bruto_referencia=_suma(r.bruto for r in refs),
        bruto_extraido=_suma(e.bruto for e in exts),
        retencion_referencia=_suma(r.retencion for r in refs),
        retencion_extraido=_suma(e.retencion for e in exts),
        nifs_referencia=len({canonizar_nif(r.nif) for r in refs if r.nif}),
        nifs_extraido=len({canonizar_nif(e.nif) for e in exts if e.nif}),
    )
