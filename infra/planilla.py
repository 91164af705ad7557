from __future__ import annotations

import io

import pandas as pd

from infra.config import load_config


_CONFIG = load_config()

# Firma de los .xlsx/.xlsm (contenedor zip) y de los .xls (OLE2)
_FIRMA_ZIP = b"PK\x03\x04"
_FIRMA_OLE = b"\xd0\xcf\x11\xe0"


def leer_primera_hoja(datos: bytes) -> pd.DataFrame:
    """Lee la primera hoja del libro como celdas crudas (``header=None``).

    Los bytes que no son un libro de Excel se intentan como CSV (export del
    portal), probando los encodings y separadores de config.yaml.
    Lanza ``ValueError`` si no hay forma de leerlos.
    """
    if not datos:
        raise ValueError("Ficheiro vazio")

    if datos[:4] == _FIRMA_OLE:
        raise ValueError("Formato .xls antigo não suportado; exporte como .xlsx")
    if datos[:4] == _FIRMA_ZIP:
        try:
            return pd.read_excel(
                io.BytesIO(datos), sheet_name=0, header=None, dtype=object, engine="openpyxl"
            )
        except Exception as exc:
            # openpyxl/zipfile lanzan tipos muy variados ante libros corruptos
            raise ValueError(f"Livro Excel ilegível: {exc}") from exc

    return leer_csv_seguro(datos)


def leer_csv_seguro(datos: bytes) -> pd.DataFrame:
    """Intenta leer un CSV probando encodings y separadores comunes."""
    lec = _CONFIG.lectura
    for enc in lec.csv_encodings:
        try:
            texto = datos.decode(enc)
        except UnicodeDecodeError:
            continue
        lineas = texto.splitlines()
        for sep in lec.csv_separadores:
            # Los export traen títulos antes de la cabecera: se fija el ancho máximo
            ancho = max((linea.count(sep) + 1 for linea in lineas), default=1)
            if ancho < 2:
                continue
            try:
                df = pd.read_csv(
                    io.StringIO(texto),
                    sep=sep,
                    header=None,
                    names=list(range(ancho)),
                    dtype=object,
                    engine="python",
                    skip_blank_lines=False,
                )
            except (pd.errors.ParserError, pd.errors.EmptyDataError):
                continue
            if df.shape[1] > 1:
                return df
    raise ValueError("Não foi possível ler o ficheiro com encoding/separador comum")
