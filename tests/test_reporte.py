from datetime import datetime

from logic.conciliacion import conciliar
from logic.modelos import RegistroExtraido, RegistroReferencia
from logic.reporte import (
    APROVADO,
    REPROVADO,
    REQUER_REVISAO,
    SECCIONES,
    exportar_informe_texto,
    formatar_moeda,
    generar_informe,
)


A = "123456789"
B = "508332915"
FECHA = datetime(2024, 4, 15, 9, 30)


def _informe(refs, exts, **kw):
    tipo = kw.pop("tipo", "iva")
    return generar_informe(conciliar(refs, exts, tipo=tipo), generado_en=FECHA, **kw)


def test_formatar_moeda():
    assert formatar_moeda(1234.5) == "1.234,50 €"
    assert formatar_moeda(1234567.891) == "1.234.567,89 €"
    assert formatar_moeda(0) == "0,00 €"
    assert formatar_moeda(None) == "0,00 €"
    assert formatar_moeda(-7.1) == "-7,10 €"
    assert formatar_moeda(1e30) == "1.000.000.000.000.000.000.000.000.000.000,00 €"


def test_informe_con_importe_enorme():
    informe = _informe(
        [RegistroReferencia(fila=2, nif=A, referencia="FT1", total=1e30)],
        [RegistroExtraido(nif=A, referencia="FT1", total=100.0)],
    )
    texto = exportar_informe_texto(informe)

    assert informe.conclusion == REPROVADO
    assert "referência 1.000.000.000.000.000.000.000.000.000.000,00 €" in texto


def test_conclusion_aprovado_con_delta_cero():
    informe = _informe(
        [RegistroReferencia(fila=2, nif=A, referencia="FT1", total=100.0)],
        [RegistroExtraido(nif=A, referencia="FT1", total=100.0)],
    )
    assert informe.conclusion == APROVADO
    assert informe.notas[0].startswith("Zero Delta")
    assert informe.discrepancias == ()


def test_conclusion_requer_revision_si_solo_hay_tolerados():
    informe = _informe(
        [RegistroReferencia(fila=2, nif=A, referencia="FT1", total=100.0)],
        [RegistroExtraido(nif=A, referencia="FT1", total=100.01)],
    )
    assert informe.conclusion == REQUER_REVISAO


def test_conclusion_reprovado_con_discrepancias():
    informe = _informe(
        [RegistroReferencia(fila=2, nif=A, referencia="FT1", total=100.0)],
        [RegistroExtraido(nif=A, referencia="FT1", total=150.0)],
    )
    assert informe.conclusion == REPROVADO
    assert len(informe.discrepancias) == 1
    assert informe.discrepancias[0].severidad == "erro"


def test_notas_extra_van_al_final():
    informe = _informe([], [], notas_extra=["Leitura: teste"])
    assert informe.notas[-1] == "Leitura: teste"


def test_texto_secciones_en_orden_fijo():
    refs = [
        RegistroReferencia(fila=2, nif=A, referencia="FT1", total=100.0),
        RegistroReferencia(fila=3, nif=A, referencia="FT2", total=40.0),
        RegistroReferencia(fila=4, nif=B, referencia="FT3", total=10.0),
    ]
    exts = [
        RegistroExtraido(nif=A, referencia="FT1", total=100.02, archivo="ft1.pdf"),
        RegistroExtraido(nif=A, referencia="FT2", total=40.01),
        RegistroExtraido(nif=B, referencia="FT9", total=77.0),
    ]
    texto = exportar_informe_texto(_informe(refs, exts, cliente="Cliente Teste", ano_fiscal=2024, trimestre=1))

    posiciones = [texto.index(titulo) for _, titulo in SECCIONES]
    assert posiciones == sorted(posiciones)
    assert texto.index("SUMÁRIO") < texto.index("ZERO DELTA: NÃO") < posiciones[0]
    assert texto.index("TOTAIS IVA") > posiciones[-1]

    assert "Cliente: Cliente Teste" in texto
    assert "Trimestre: 1º" in texto
    assert "Data: 15/04/2024 09:30" in texto
    assert "Total: referência 100,00 € | extraído 100,02 € | delta 0,02 €" in texto
    assert "Linha 4 | NIF 508332915 | Doc FT3" in texto
    assert "Total 77,00 €" in texto
    assert texto.endswith("\n")


def test_texto_sin_registros_en_grupo_dice_nenhum():
    texto = exportar_informe_texto(_informe(
        [RegistroReferencia(fila=2, nif=A, referencia="FT1", total=100.0)],
        [RegistroExtraido(nif=A, referencia="FT1", total=100.0)],
    ))
    assert texto.count("(nenhum)") == len(SECCIONES)
    assert "ZERO DELTA: SIM" in texto
    assert f"CONCLUSÃO: {APROVADO}" in texto


def test_texto_lista_por_fila_de_referencia():
    refs = [
        RegistroReferencia(fila=7, nif=A, referencia="FT7", total=1.0),
        RegistroReferencia(fila=3, nif=A, referencia="FT3", total=1.0),
    ]
    texto = exportar_informe_texto(_informe(refs, []))
    assert texto.index("Linha 3 |") < texto.index("Linha 7 |")


def test_totales_por_tipo():
    refs = [RegistroReferencia(fila=2, nif=A, bruto=1000.0, retencion=250.0)]
    exts = [RegistroExtraido(nif=A, bruto=1000.0, retencion=250.0)]

    m10 = exportar_informe_texto(_informe(refs, exts, tipo="modelo10"))
    assert "TOTAIS MODELO 10" in m10
    assert "TOTAIS IVA" not in m10
    assert "Valor Bruto (referência): 1.000,00 €" in m10

    ambos = exportar_informe_texto(_informe(refs, exts, tipo="ambos"))
    assert "TOTAIS MODELO 10" in ambos and "TOTAIS IVA" in ambos


def test_texto_determinista():
    refs = [RegistroReferencia(fila=2, nif=A, referencia="FT1", total=100.0)]
    exts = [RegistroExtraido(nif=A, referencia="FT2", total=10.0)]
    informe = _informe(refs, exts)
    assert exportar_informe_texto(informe) == exportar_informe_texto(informe)
    assert exportar_informe_texto(_informe(refs, exts)) == exportar_informe_texto(informe)
