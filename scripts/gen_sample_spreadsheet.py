#!/usr/bin/env python3
"""Synthetic offer spreadsheet generator.

Writes an .xlsx in the layout ``cardgen`` reads by default:
- Row 1: header (codigo, descricao, preco, fornecedor, unidade, validade)
- Row 2+: one product per row

Useful for manual runs of ``cardgen generate`` and for timing larger jobs.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

PRODUCTS = [
    "Arroz Tipo 1 5kg", "Feijão Carioca 1kg", "Café Torrado 500g", "Açúcar Refinado 1kg",
    "Óleo de Soja 900ml", "Leite Integral 1L", "Macarrão Espaguete 500g", "Farinha de Trigo 1kg",
    "Sabão em Pó 1kg", "Detergente Líquido 500ml", "Papel Higiênico 12un", "Biscoito Recheado 140g",
]
SUPPLIERS = ["Acme", "Bom Grão", "Distribuidora Sul", "Casa Nova"]
UNITS = ["un", "pct", "cx", "kg"]


def generate_offers(rows: int, seed: int = 42) -> pd.DataFrame:
    """Offer rows with realistic prices and a supplier per row."""
    rng = np.random.default_rng(seed)
    names = rng.choice(PRODUCTS, rows)
    return pd.DataFrame({
        "codigo": [str(1000 + i) for i in range(rows)],
        "descricao": [f"{name} #{i + 1}" for i, name in enumerate(names)],
        "preco": np.round(rng.uniform(1.99, 199.99, rows), 2),
        "fornecedor": rng.choice(SUPPLIERS, rows),
        "unidade": rng.choice(UNITS, rows),
        "validade": [f"{d:02d}/12" for d in rng.integers(1, 29, rows)],
    })


def create_spreadsheet(output_path: Path, rows: int, sheet: str = "Ofertas", seed: int = 42) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df = generate_offers(rows, seed)
    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet, index=False)
    print(f"Created spreadsheet: {output_path}")
    print(f"  Sheet: {sheet}")
    print(f"  Rows: {rows} (+ header)")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a synthetic offer spreadsheet",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s data/ofertas.xlsx
  %(prog)s data/large.xlsx --rows 500 --seed 7
        """
    )
    parser.add_argument("output", type=Path, help="Output .xlsx path")
    parser.add_argument("--rows", type=int, default=24, help="Number of product rows (default: 24)")
    parser.add_argument("--sheet", default="Ofertas", help="Sheet name (default: Ofertas)")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    if args.output.suffix.lower() != ".xlsx":
        print("Error: output must be an .xlsx file", file=sys.stderr)
        return 1

    try:
        create_spreadsheet(args.output, args.rows, args.sheet, args.seed)
    except OSError as e:
        print(f"Error writing spreadsheet: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
