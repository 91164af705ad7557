from __future__ import annotations
import io
import pandas as pd

from logic.modelos import CAMPOS_POR_TIPO, ETIQUETAS_CAMPO, ResultadoConciliacion
from logic.reporte import InformeAuditoria


FORMATO_MOEDA = "#,##0.00"


def pares_a_dataframe(resultado: ResultadoConciliacion) -> pd.DataFrame:
    """Una fila por par, en el mismo orden que el resultado (fila de referencia / descubrimiento)."""
    campos = CAMPOS_POR_TIPO[resultado.tipo]
    filas = []
    for p in resultado.pares:
        ref, ext = p.referencia, p.extraido
        origen = ref or ext
        fila = {
            "Estado": p.estado,
            "Linha": ref.fila if ref is not None else None,
            "NIF": origen.nif,
            "Documento": origen.referencia,
            "Data": origen.fecha,
            "Ficheiro": ext.archivo if ext is not None else "",
        }
        for campo in campos:
            etiqueta = ETIQUETAS_CAMPO[campo]
            fila[f"{etiqueta} (referência)"] = getattr(ref, campo) if ref is not None else None
            fila[f"{etiqueta} (extraído)"] = getattr(ext, campo) if ext is not None else None
            fila[f"Delta {etiqueta}"] = float(p.deltas[campo]) if campo in p.deltas else None
        filas.append(fila)
    return pd.DataFrame(filas)


def dataframe_a_excel_bytes(
    df: pd.DataFrame,
    sheet_name: str = "Reconciliacao",
    formato_columnas: dict[str, str] | None = None
) -> bytes:
    """
    Exporta un DataFrame a Excel conservando los tipos (fechas y números, no texto).
    Con `formato_columnas` = {nombre_columna: "DD/MM/YYYY"} se aplica number_format.
    """
    buff = io.BytesIO()
    with pd.ExcelWriter(buff, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=sheet_name)
        if formato_columnas:
            ws = writer.sheets[sheet_name]
            # Mapear nombres de columnas a letras
            headers = [c.value for c in ws[1]]
            for col_name, fmt in formato_columnas.items():
                if col_name in headers:
                    col_idx = headers.index(col_name) + 1
                    col_letter = ws.cell(row=1, column=col_idx).column_letter
                    for cell in ws[col_letter][1:]:
                        cell.number_format = fmt
    return buff.getvalue()


def informe_a_excel_bytes(informe: InformeAuditoria) -> bytes:
    """Los pares del informe en .xlsx, con formato de fecha y de moneda."""
    df = pares_a_dataframe(informe.resultado)
    formatos = {"Data": "DD/MM/YYYY"}
    for col in df.columns:
        if col.endswith("(referência)") or col.endswith("(extraído)") or col.startswith("Delta "):
            formatos[col] = FORMATO_MOEDA
    return dataframe_a_excel_bytes(df, formato_columnas=formatos)
