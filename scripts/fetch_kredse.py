#!/usr/bin/env python3
"""Fetch storkredse/opstillingskredse from Dataforsyningen and write dropdown CSVs.

Output:
  - data/meta/kredse.csv (storkreds,kreds)
  - data/meta/<Storkreds>_kredse.csv (kreds)

Names are written with underscores so they match the paths from build_ft_csv.py.
"""

from __future__ import annotations

import argparse
import csv
import json
import re
import sys
import unicodedata
from pathlib import Path
from urllib.request import Request, urlopen

STORKREDS_URL = "https://api.dataforsyningen.dk/storkredse?format=geojson"
OPKREDS_URL = "https://api.dataforsyningen.dk/opstillingskredse?format=geojson"

# æ, ø, å sort after z; ä and ö collate as æ and ø
_DANISH_TAIL = str.maketrans({"æ": "{", "ä": "{", "ø": "|", "ö": "|", "å": "}"})


def fetch_json(url: str, timeout: int = 30):
    req = Request(url, headers={"Accept": "application/json"})
    with urlopen(req, timeout=timeout) as resp:
        raw = resp.read().decode("utf-8", errors="replace")
    return json.loads(raw)


def slugify_name(name: str | None) -> str:
    return re.sub(r"\s+", "_", (name or "").strip()).replace("__", "_")


def danish_sort_key(name: str) -> str:
    """Sort key following Danish collation, where "aa" is the letter å."""
    out = []
    for ch in name.casefold().replace("aa", "å"):
        if ch in "æøåäö":
            out.append(ch)
            continue
        decomposed = unicodedata.normalize("NFD", ch)
        out.append("".join(c for c in decomposed if not unicodedata.combining(c)))
    return "".join(out).translate(_DANISH_TAIL)


def features_of(payload) -> list[dict]:
    feats = payload.get("features") if isinstance(payload, dict) else None
    return [f.get("properties") or {} for f in feats or [] if isinstance(f, dict)]


def storkreds_names(features: list[dict]) -> dict:
    return {p.get("nummer"): p.get("navn") for p in features if p.get("nummer") is not None}


def kredse_by_storkreds(features: list[dict]) -> dict:
    out: dict = {}
    for p in features:
        out.setdefault(p.get("storkredsnummer"), []).append(p.get("navn") or "")
    return out


def build_meta_rows(stork_map: dict, by_stork: dict) -> tuple[list[dict], dict[str, list[dict]]]:
    all_rows: list[dict] = []
    per_stork: dict[str, list[dict]] = {}
    for snr, sname in stork_map.items():
        kredse = sorted(by_stork.get(snr, []), key=danish_sort_key)
        stork_slug = slugify_name(sname)
        per_stork[stork_slug] = [{"kreds": slugify_name(k)} for k in kredse]
        all_rows.extend({"storkreds": stork_slug, "kreds": slugify_name(k)} for k in kredse)
    return all_rows, per_stork


def write_csv(path: Path, rows: list[dict], header: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=header, lineterminator="\n")
        writer.writeheader()
        writer.writerows(rows)


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Fetch kreds names from Dataforsyningen for the valg dropdowns")
    ap.add_argument("--out-dir", default="data/meta")
    ap.add_argument("--storkreds-url", default=STORKREDS_URL)
    ap.add_argument("--opkreds-url", default=OPKREDS_URL)
    ap.add_argument("--timeout", type=int, default=30)
    args = ap.parse_args(argv)

    try:
        stork = fetch_json(args.storkreds_url, timeout=args.timeout)
        op = fetch_json(args.opkreds_url, timeout=args.timeout)
    except Exception as e:
        print(f"fetch failed: {e}", file=sys.stderr)
        return 1

    stork_map = storkreds_names(features_of(stork))
    all_rows, per_stork = build_meta_rows(stork_map, kredse_by_storkreds(features_of(op)))

    out_dir = Path(args.out_dir)
    write_csv(out_dir / "kredse.csv", all_rows, ["storkreds", "kreds"])
    for stork_slug, rows in per_stork.items():
        write_csv(out_dir / f"{stork_slug}_kredse.csv", rows, ["kreds"])

    print(f"wrote {len(all_rows)} rows to {out_dir / 'kredse.csv'} and {len(per_stork)} per-storkreds files")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
