from datetime import date, datetime
from decimal import Decimal

import pytest

from infra.config import load_config
from logic.normalizacion import (
    NIF_RESUMEN,
    canonizar_nif,
    coercer_fecha,
    delta_importe,
    es_nif_resumen,
    nif_valido,
    normalizar_referencia,
    parsear_importe,
    redondear,
)


def test_canonizar_nif_variantes():
    assert canonizar_nif("123 456 789") == "123456789"
    assert canonizar_nif("PT123456789") == "123456789"
    assert canonizar_nif("pt 123.456.789") == "123456789"
    assert canonizar_nif(123456789) == "123456789"
    assert canonizar_nif(123456789.0) == "123456789"
    assert canonizar_nif("508332915 - EMPRESA 2 LDA") == "508332915"
    assert canonizar_nif(None) == ""
    assert canonizar_nif(float("nan")) == ""
    assert canonizar_nif("   ") == ""


def test_nif_valido_digito_control():
    assert nif_valido("123456789")
    assert nif_valido("508332915")
    assert nif_valido("501964843")
    assert not nif_valido("123456780")   # dígito de control errado
    assert not nif_valido("412345678")   # primer dígito no admitido
    assert not nif_valido("12345678")
    assert not nif_valido("")


def test_nif_resumen_no_es_valido_pero_se_reconoce():
    assert es_nif_resumen(NIF_RESUMEN)
    assert not nif_valido(NIF_RESUMEN)


def test_redondeo_medio_se_aleja_de_cero():
    assert redondear(2.675) == Decimal("2.68")
    assert redondear(-2.675) == Decimal("-2.68")
    assert redondear(0.125) == Decimal("0.13")
    assert redondear(1.005) == Decimal("1.01")
    assert redondear(None) == Decimal("0.00")
    assert redondear(Decimal("3.14159")) == Decimal("3.14")


def test_redondeo_de_importes_enormes_e_infinitos():
    assert redondear(1e30) == Decimal("1000000000000000000000000000000.00")
    assert delta_importe(1e30, 100) == Decimal("999999999999999999999999999900.00")
    with pytest.raises(ValueError):
        redondear(float("inf"))
    with pytest.raises(ValueError):
        redondear(Decimal("Infinity"))


def test_delta_sin_artefactos_de_float():
    """100.01 - 100.00 en float no da 0.01 exacto; en céntimos sí."""
    assert delta_importe(100.01, 100.00) == Decimal("0.01")
    assert delta_importe(0.1 + 0.2, 0.3) == Decimal("0.00")
    assert delta_importe(None, 0) == Decimal("0.00")
    assert delta_importe(None, 12.5) == Decimal("12.50")


@pytest.mark.parametrize("entrada, esperado", [
    ("1.234,56", 1234.56),
    ("1 234,56 €", 1234.56),
    ("€1.234,56", 1234.56),
    ("1,234.56", 1234.56),
    ("100,5", 100.5),
    ("12.50", 12.5),
    ("1.500", 1500.0),
    ("1.234.567", 1234567.0),
    ("(12,50)", -12.5),
    ("-7,10", -7.1),
    ("7,10-", -7.1),
    ("123,00 EUR", 123.0),
    (42, 42.0),
    (19.99, 19.99),
])
def test_parsear_importe_formatos(entrada, esperado):
    assert parsear_importe(entrada) == pytest.approx(esperado)


def test_parsear_importe_vacio_e_invalido():
    assert parsear_importe(None) is None
    assert parsear_importe("") is None
    assert parsear_importe(float("nan")) is None
    with pytest.raises(ValueError):
        parsear_importe("abc")
    with pytest.raises(ValueError):
        parsear_importe("12,3x")
    with pytest.raises(ValueError):
        parsear_importe(float("inf"))
    with pytest.raises(ValueError):
        parsear_importe("9" * 400)  # desborda a inf como float


def test_coercer_fecha():
    assert coercer_fecha("2024-03-05") == date(2024, 3, 5)
    assert coercer_fecha("05/03/2024") == date(2024, 3, 5)
    assert coercer_fecha("05-03-2024") == date(2024, 3, 5)
    assert coercer_fecha(datetime(2024, 3, 5, 10, 30)) == date(2024, 3, 5)
    assert coercer_fecha(date(2024, 3, 5)) == date(2024, 3, 5)
    assert coercer_fecha(45292) == date(2024, 1, 1)  # serial de Excel


def test_coercer_fecha_invalida_es_none_no_epoca():
    assert coercer_fecha("31/02/2024") is None
    assert coercer_fecha("amanhã") is None
    assert coercer_fecha(None) is None
    assert coercer_fecha(0) is None


def test_normalizar_referencia():
    assert normalizar_referencia("FT 2024/1") == "ft2024/1"
    assert normalizar_referencia("  ft2024/1 ") == "ft2024/1"
    assert normalizar_referencia(1234.0) == "1234"
    assert normalizar_referencia(None) == ""


def test_config_por_defecto():
    cfg = load_config()
    assert cfg.conciliacion.tolerancia_eur_default == 0.01
    assert cfg.conciliacion.ausente_como_cero is True
    assert cfg.lectura.filas_busqueda_encabezado == 10
    assert ";" in cfg.lectura.csv_separadores
