"""Informe de auditoría: proyección del resultado de conciliación y su versión en texto.

El informe no vuelve a conciliar nada; solo reordena y formatea lo que ya
trae el ``ResultadoConciliacion``. El texto es estable: mismo informe, mismos
bytes.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Literal

from infra.config import load_config
from logic.conciliacion import discrepancias, totales_iva, totales_modelo10
from logic.modelos import (
    CAMPOS_POR_TIPO,
    DISCREPANTE,
    ETIQUETAS_CAMPO,
    SIN_PAR_EXTRAIDO,
    SIN_PAR_REFERENCIA,
    TOLERADO,
    Discrepancia,
    ParConciliacion,
    ResultadoConciliacion,
    TotalesIVA,
    TotalesModelo10,
)
from logic.normalizacion import redondear


_CFG = load_config()

TITULO = "Relatório de Auditoria de Reconciliação"

APROVADO = "APROVADO"
REQUER_REVISAO = "REQUER REVISÃO"
REPROVADO = "REPROVADO"
Conclusion = Literal["APROVADO", "REQUER REVISÃO", "REPROVADO"]

NOMBRES_TIPO = {"iva": "IVA", "modelo10": "Modelo 10", "ambos": "IVA + Modelo 10"}

# Importes que se muestran de un registro sin par
CAMPOS_SIN_PAR = {
    "iva": ("total",),
    "modelo10": ("bruto", "retencion"),
    "ambos": ("total", "bruto", "retencion"),
}

# Orden fijo de los listados por grupo
SECCIONES = (
    (DISCREPANTE, "DISCREPÂNCIAS (FORA DA TOLERÂNCIA)"),
    (TOLERADO, "DENTRO DA TOLERÂNCIA (DIFERENÇA NÃO NULA)"),
    (SIN_PAR_REFERENCIA, "EM FALTA NA EXTRACÇÃO (SÓ NA REFERÊNCIA)"),
    (SIN_PAR_EXTRAIDO, "EXTRA (SÓ NOS DOCUMENTOS EXTRAÍDOS)"),
)


@dataclass(frozen=True)
class InformeAuditoria:
    resultado: ResultadoConciliacion
    generado_en: datetime
    conclusion: Conclusion
    notas: tuple[str, ...]
    discrepancias: tuple[Discrepancia, ...]
    cliente: str | None = None
    ano_fiscal: int | None = None
    trimestre: int | None = None
    titulo: str = TITULO
    totales_iva: TotalesIVA | None = None
    totales_modelo10: TotalesModelo10 | None = None

    @property
    def tipo(self) -> str:
        return self.resultado.tipo

    @property
    def tolerancia(self) -> Decimal:
        return self.resultado.tolerancia


def generar_informe(
    resultado: ResultadoConciliacion,
    cliente: str | None = None,
    ano_fiscal: int | None = None,
    trimestre: int | None = None,
    generado_en: datetime | None = None,
    notas_extra: Iterable[str] = (),
) -> InformeAuditoria:
    if resultado is None:
        raise TypeError("resultado é obrigatório")
    cfg = _CFG.reporte
    resumen = resultado.resumen
    notas: list[str] = []

    if resumen.sin_par_referencia:
        notas.append(f"{resumen.sin_par_referencia} registos da referência não encontrados na extracção")
    if resumen.sin_par_extraido:
        notas.append(f"{resumen.sin_par_extraido} registos extraídos não existem na referência")
    if resumen.discrepantes:
        notas.append(f"{resumen.discrepantes} registos com discrepâncias acima da tolerância")
    if resumen.tolerados:
        notas.append(f"{resumen.tolerados} registos dentro da tolerância mas sem igualdade ao cêntimo")

    nifs_dudosos = sum(1 for p in resultado.pares if not p.nif_confiable)
    if nifs_dudosos:
        notas.append(f"{nifs_dudosos} registos com NIF que falha o dígito de controlo")
    if resultado.ausente_como_cero:
        notas.append("Campos não reportados foram comparados como 0,00 €")

    if resultado.es_delta_cero:
        conclusion = APROVADO
        notas.insert(0, "Zero Delta alcançado - todos os valores conferem")
    elif (
        resumen.tasa_conciliacion >= cfg.tasa_minima_revision
        and resumen.fuera_tolerancia <= cfg.max_fuera_tolerancia_revision
    ):
        conclusion = REQUER_REVISAO
        notas.insert(0, "Pequenas discrepâncias detectadas - revisão manual recomendada")
    else:
        conclusion = REPROVADO
        notas.insert(0, "Discrepâncias significativas - reconciliação falhada")

    notas.extend(notas_extra)

    return InformeAuditoria(
        resultado=resultado,
        generado_en=generado_en or datetime.now(timezone.utc),
        conclusion=conclusion,
        notas=tuple(notas),
        discrepancias=tuple(discrepancias(resultado)),
        cliente=cliente,
        ano_fiscal=ano_fiscal,
        trimestre=trimestre,
        totales_iva=totales_iva(resultado) if resultado.tipo in ("iva", "ambos") else None,
        totales_modelo10=totales_modelo10(resultado) if resultado.tipo in ("modelo10", "ambos") else None,
    )


# ==========================================================
# Formato
# ==========================================================
def formatar_moeda(valor) -> str:
    """1234.5 -> '1.234,50 €' (siempre 2 decimales)."""
    d = redondear(valor)
    texto = f"{d.copy_abs():,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"-{texto} €" if d < 0 else f"{texto} €"


def _porcentaje(valor: float) -> str:
    return f"{valor:.2f}".replace(".", ",") + "%"


def _identidad(p: ParConciliacion) -> str:
    partes = []
    if p.referencia is not None:
        partes.append(f"Linha {p.referencia.fila}")
    origen = p.referencia or p.extraido
    partes.append(f"NIF {origen.nif or '-'}")
    partes.append(f"Doc {origen.referencia or '-'}")
    if p.extraido is not None and p.extraido.archivo:
        partes.append(p.extraido.archivo)
    if origen.nombre:
        partes.append(origen.nombre)
    return " | ".join(partes)


def _lineas_par(p: ParConciliacion, tipo: str) -> list[str]:
    lineas = [f"  {_identidad(p)}"]
    if p.es_conciliado:
        for campo in CAMPOS_POR_TIPO[tipo]:
            delta = p.deltas.get(campo, Decimal("0"))
            if delta == 0 and campo not in p.campos_sin_valor:
                continue
            detalle = (
                f"    {ETIQUETAS_CAMPO[campo]}: referência {formatar_moeda(getattr(p.referencia, campo))}"
                f" | extraído {formatar_moeda(getattr(p.extraido, campo))}"
                f" | delta {formatar_moeda(delta)}"
            )
            if campo in p.campos_sin_valor:
                detalle += " (não reportado num dos lados)"
            lineas.append(detalle)
        return lineas

    registro = p.referencia or p.extraido
    valores = " | ".join(
        f"{ETIQUETAS_CAMPO[c]} {formatar_moeda(getattr(registro, c))}" for c in CAMPOS_SIN_PAR[tipo]
    )
    lineas.append(f"    {valores}")
    return lineas


def exportar_informe_texto(informe: InformeAuditoria) -> str:
    """Texto plano para descarga (.txt).

    Orden fijo: cabecera, sumario, veredicto zero-delta con notas, listados por
    grupo y totales agregados.
    """
    cfg = _CFG.reporte
    doble, simple = "═" * cfg.ancho_linea, "─" * cfg.ancho_linea
    res = informe.resultado
    resumen = res.resumen

    lines: list[str] = [doble, informe.titulo.upper(), doble, ""]
    lines.append(f"Data: {informe.generado_en.strftime(cfg.formato_fecha)}")
    if informe.cliente:
        lines.append(f"Cliente: {informe.cliente}")
    if informe.ano_fiscal:
        lines.append(f"Ano Fiscal: {informe.ano_fiscal}")
    if informe.trimestre:
        lines.append(f"Trimestre: {informe.trimestre}º")
    lines.append(f"Tipo: {NOMBRES_TIPO[res.tipo]}")
    lines.append(f"Tolerância: {formatar_moeda(res.tolerancia)}")

    lines += ["", simple, "SUMÁRIO", simple]
    lines.append(f"Registos na referência:  {resumen.total_referencia}")
    lines.append(f"Registos extraídos:      {resumen.total_extraido}")
    lines.append(f"Taxa de conciliação:     {_porcentaje(resumen.tasa_conciliacion)}")
    lines.append(f"Exactos:                 {resumen.exactos}")
    lines.append(f"Dentro da tolerância:    {resumen.tolerados}")
    lines.append(f"Discrepantes:            {resumen.discrepantes}")
    lines.append(f"Em falta:                {resumen.sin_par_referencia}")
    lines.append(f"Extra:                   {resumen.sin_par_extraido}")
    lines.append(f"Fora da tolerância:      {resumen.fuera_tolerancia}")

    lines += ["", doble]
    lines.append(f"ZERO DELTA: {'SIM' if res.es_delta_cero else 'NÃO'}")
    lines.append(f"CONCLUSÃO: {informe.conclusion}")
    lines.append(doble)
    if informe.notas:
        lines += ["", "Notas:"]
        lines += [f"  • {nota}" for nota in informe.notas]

    for estado, titulo in SECCIONES:
        pares = res.por_estado(estado)
        lines += ["", simple, f"{titulo}: {len(pares)}", simple]
        if not pares:
            lines.append("  (nenhum)")
        for p in pares:
            lines += _lineas_par(p, res.tipo)

    if informe.totales_iva is not None:
        t = informe.totales_iva
        lines += ["", simple, "TOTAIS IVA", simple]
        lines.append(f"IVA (referência):        {formatar_moeda(t.iva_referencia)}")
        lines.append(f"IVA (extraído):          {formatar_moeda(t.iva_extraido)}")
        lines.append(f"Delta:                   {formatar_moeda(t.delta)}")

    if informe.totales_modelo10 is not None:
        t = informe.totales_modelo10
        lines += ["", simple, "TOTAIS MODELO 10", simple]
        lines.append(f"Valor Bruto (referência): {formatar_moeda(t.bruto_referencia)}")
        lines.append(f"Valor Bruto (extraído):   {formatar_moeda(t.bruto_extraido)}")
        lines.append(f"Delta Bruto:              {formatar_moeda(t.delta_bruto)}")
        lines.append(f"Retenção (referência):    {formatar_moeda(t.retencion_referencia)}")
        lines.append(f"Retenção (extraído):      {formatar_moeda(t.retencion_extraido)}")
        lines.append(f"Delta Retenção:           {formatar_moeda(t.delta_retencion)}")
        lines.append(f"NIFs únicos (referência): {t.nifs_referencia}")
        lines.append(f"NIFs únicos (extraído):   {t.nifs_extraido}")

    return "\n".join(lines) + "\n"
