#!/usr/bin/env python3
"""
Generates sample song spreadsheets covering the layouts songsheet handles.

Run from the repo root:
    python sample-data/generate_song_sheets.py

Files written next to this script:
  repertorio.xlsx
    - Banner row and a blank row above the real header
    - Header "Artista | Nome da Música | Compositor | Ano"
    - Artist and composer left blank under the first song of each block
    - Artist cells merged vertically for one block (A7:A8)
    - Titles prefixed with "1." / "Música:" noise
    - A duplicate song with a more complete composer further down
    - A second sheet "Notas" that is ignored by default
  sem_cabecalho.csv
    - Semicolon-delimited, latin-1, no header: artist ; title
  alternado.xlsx
    - One column: title row followed by its artist row, trailing title alone
"""

from pathlib import Path

import openpyxl

HERE = Path(__file__).parent


def build_repertoire(path: Path) -> None:
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Repertório"

    ws.append(["Repertório São João 2024", None, None, None])
    ws.append([None, None, None, None])
    ws.append(["Artista", "Nome da Música", "Compositor", "Ano"])
    rows = [
        ["Luiz Gonzaga",        "1. Asa Branca",              "Humberto Teixeira",  1947],
        [None,                  "2. Juazeiro",                None,                 1949],
        [None,                  "3. Assum Preto",             None,                 1950],
        ["Jackson do Pandeiro", "Música: Chiclete com Banana", "Gordurinha",        1959],
        [None,                  "Sebastiana",                 "Rosil Cavalcanti",   None],
        [None,                  None,                         None,                 None],
        ["Marinês",             "Peba na Pimenta",            None,                 "1957"],
        [None,                  "x",                          None,                 None],
        ["Luiz Gonzaga",        "Asa Branca",                 "Humberto Teixeira e Luiz Gonzaga", None],
    ]
    for row in rows:
        ws.append(row)
    ws.merge_cells("A7:A8")

    notes = wb.create_sheet("Notas")
    notes.append(["Planilha exportada do sistema antigo"])

    wb.save(path)


def build_headerless_csv(path: Path) -> None:
    lines = [
        "Luiz Gonzaga;Asa Branca",
        ";Xote das Meninas",
        "Elba Ramalho;Banho de Cheiro",
        "Dominguinhos;Eu Só Quero um Xodó",
    ]
    path.write_bytes(("\n".join(lines) + "\n").encode("latin-1"))


def build_alternating(path: Path) -> None:
    wb = openpyxl.Workbook()
    ws = wb.active
    for value in ["Asa Branca", "Luiz Gonzaga", None, "Banho de Cheiro", "Elba Ramalho", "Qui Nem Jiló"]:
        ws.append([value])
    wb.save(path)


def main() -> None:
    outputs = {
        "repertorio.xlsx": build_repertoire,
        "sem_cabecalho.csv": build_headerless_csv,
        "alternado.xlsx": build_alternating,
    }
    for name, build in outputs.items():
        target = HERE / name
        build(target)
        print(f"Created: {target}")


if __name__ == "__main__":
    main()
