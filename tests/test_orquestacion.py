import io
from datetime import date, datetime

import pandas as pd

from logic.modelos import EXACTO, SIN_PAR_REFERENCIA, RegistroReferencia, ResultadoLectura
from logic.normalizacion import NIF_RESUMEN
from logic.orquestacion import (
    cargar_referencia,
    reconciliar_planilla,
    registro_resumen,
    registros_extraidos_desde_dicts,
    registros_referencia_desde_dicts,
)
from logic.reporte import APROVADO, REPROVADO


def _xlsx(filas):
    buff = io.BytesIO()
    pd.DataFrame(filas).to_excel(buff, index=False, header=False, engine="openpyxl")
    return buff.getvalue()


class ParserFijo:
    """Parser alternativo de prueba: devuelve siempre lo mismo y cuenta llamadas."""

    def __init__(self, registros):
        self.registros = registros
        self.llamadas = 0

    def parsear(self, datos):
        self.llamadas += 1
        return ResultadoLectura(registros=self.registros, avisos=["alternativo usado"], tipo="iva")


PLANILLA = [
    ["NIF", "Nome", "Nº Documento", "Total", "IVA 23%"],
    [123456789, "Empresa A Lda", "FT 1", "123,00", "23,00"],
    [508332915, "Empresa B SA", "FT 2", "61,50", "11,50"],
]


def test_alternativo_se_usa_si_el_deterministico_no_lee_nada():
    alt = ParserFijo([RegistroReferencia(fila=1, nif="123456789", total=10.0)])
    res = cargar_referencia(_xlsx([["foo", "bar"], [1, 2]]), alternativos=[alt])

    assert alt.llamadas == 1
    assert len(res.registros) == 1
    # avisos de ambos intentos
    assert any("cabeçalho" in a for a in res.avisos)
    assert "alternativo usado" in res.avisos


def test_alternativo_no_se_llama_si_hay_registros():
    alt = ParserFijo([])
    res = cargar_referencia(_xlsx(PLANILLA), alternativos=[alt])

    assert alt.llamadas == 0
    assert [r.referencia for r in res.registros] == ["FT 1", "FT 2"]


def test_sin_alternativos_devuelve_vacio_con_avisos():
    res = cargar_referencia(b"")
    assert res.vacio
    assert res.avisos


def test_registros_desde_dicts():
    refs = registros_referencia_desde_dicts([
        {"nif": "PT123456789", "name": "Empresa A", "document_number": "FT1",
         "date": "2024-01-05", "total_amount": "123,00", "vat_standard": 23},
        {"nif": "508332915", "total_amount": "n/d"},
    ])
    assert [r.fila for r in refs] == [1, 2]
    assert refs[0].nif == "123456789"
    assert refs[0].fecha == date(2024, 1, 5)
    assert refs[0].total == 123.0
    assert refs[0].iva_normal == 23.0
    assert refs[1].total is None

    exts = registros_extraidos_desde_dicts([
        {"nif": 508332915, "file_name": "fatura.pdf", "confidence": 87,
         "gross_amount": 1000, "withholding_amount": 250, "withholding_rate": 25,
         "income_category": "B"},
    ])
    [e] = exts
    assert e.nif == "508332915"
    assert e.archivo == "fatura.pdf"
    assert e.confianza == 87.0
    assert (e.bruto, e.retencion, e.tasa_retencion) == (1000.0, 250.0, 25.0)
    assert e.categoria == "B"


def test_registro_resumen():
    r = registro_resumen("IVA 1º Trimestre", 1000.0, 230.0)
    assert r.nif == NIF_RESUMEN
    assert r.es_resumen
    assert r.nif_confiable
    assert r.fila == 1
    assert r.nombre == "Apuramento IVA 1º Trimestre"
    assert (r.base_normal, r.iva_normal) == (1000.0, 230.0)


def test_registro_resumen_tras_registros_leidos():
    """Junto a filas leídas, el resumen va en una fila posterior y no repite número."""
    lectura = cargar_referencia(_xlsx(PLANILLA))
    ultima = max(r.fila for r in lectura.registros)
    refs = [*lectura.registros, registro_resumen("IVA", 150.0, 34.5, fila=ultima + 1)]

    filas = [r.fila for r in refs]
    assert filas == [2, 3, 4]
    assert len(set(filas)) == len(filas)


def test_importes_externos_no_finitos_son_ausentes():
    [r] = registros_referencia_desde_dicts([
        {"nif": "123456789", "total_amount": float("inf"), "vat_standard": "9" * 400, "gross_amount": 10},
    ])
    assert r.total is None
    assert r.iva_normal is None
    assert r.bruto == 10.0


def test_reconciliar_planilla_de_punta_a_punta():
    extraidos = registros_extraidos_desde_dicts([
        {"nif": "123456789", "document_number": "FT1", "total_amount": 123.0,
         "vat_standard": 23.0, "file_name": "ft1.pdf"},
        {"nif": "508332915", "document_number": "FT 2", "total_amount": 61.5,
         "vat_standard": 11.5, "file_name": "ft2.pdf"},
    ])
    lectura, informe = reconciliar_planilla(
        _xlsx(PLANILLA), extraidos, cliente="Cliente X", generado_en=datetime(2024, 1, 1)
    )

    assert lectura.tipo == "iva"
    assert [p.estado for p in informe.resultado.pares] == [EXACTO, EXACTO]
    assert informe.conclusion == APROVADO
    assert informe.cliente == "Cliente X"


def test_reconciliar_planilla_con_avisos_de_lectura():
    filas = PLANILLA + [[None, "Sem NIF", "FT 3", "5,00", "0,94"]]
    _, informe = reconciliar_planilla(_xlsx(filas), [], generado_en=datetime(2024, 1, 1))

    assert informe.resultado.resumen.sin_par_referencia == 2
    assert informe.conclusion == REPROVADO
    assert all(p.estado == SIN_PAR_REFERENCIA for p in informe.resultado.pares)
    assert "Leitura: Linha 4: sem NIF, linha ignorada" in informe.notas
