#!/usr/bin/env python3
"""Build per-kreds and per-storkreds CSV tables from raw Folketingsvalg JSON exports.

Input layout (one tree per year, e.g. data/raw/ft/2019/):
  - Valggeografi files naming Storkreds, Opstillingskreds and Afstemningsomraade
  - Kandidatdata/*.json candidate rosters (optional)
  - Valgresultater/*.json, one file per afstemningsomraade

Output:
  - <out>/<year>/<Storkreds>/<Kreds>_allepartier.csv
  - <out>/<year>/<Storkreds>_allepartier.csv
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import math
import re
import sys
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

logger = logging.getLogger(__name__)

DEFAULT_YEARS = [2015, 2019]

HEADER = [
    "storkreds",
    "kreds",
    "valgsted_id",
    "valgsted_navn",
    "kandidat_navn",
    "parti",
    "parti_bogstav",
    "stemmer",
]

PARTY_LIST_NAME = "Partiliste"
OUTSIDE_PARTY_NAME = "Uden for parti"
OUTSIDE_PARTY_LETTER = "-"
UNRESOLVED_SLUG = "Ukendt"

# role -> filename needles, all must match (case-insensitive)
DATASET_ROLES: dict[str, tuple[str, ...]] = {
    "storkreds": ("valggeografi", "storkreds", ".json"),
    "opstillingskreds": ("valggeografi", "opstillings", ".json"),
    "afstemningsomraade": ("valggeografi", "afstemningsomra", ".json"),
}
CANDIDATE_DIR = "kandidatdata"
RESULT_DIR = "valgresultater"


class MissingGeographyError(RuntimeError):
    def __init__(self, year: int, missing: list[str], found: dict[str, Path]):
        self.year = year
        self.missing = missing
        self.found = found
        super().__init__(f"[{year}] missing geography files for: {', '.join(missing)}")


def normalize_text(s: Any) -> str:
    return "" if s is None else str(s).strip()


def slugify(name: Any) -> str:
    return re.sub(r"\s+", "_", normalize_text(name)) or UNRESOLVED_SLUG


# --- field accessors --------------------------------------------------------


Accessor = Callable[[dict], Any]


def field_at(*path: str) -> Accessor:
    def get(record: dict) -> Any:
        value: Any = record
        for key in path:
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value

    return get


def first_present(record: Any, accessors: Iterable[Accessor]) -> Any:
    if not isinstance(record, dict):
        return None
    for accessor in accessors:
        value = accessor(record)
        if value is not None:
            return value
    return None


# Ordered per entity. "Kode"/"...Reference.Kode" is the 2019 DST export,
# "Id"/"Nummer"/"...Id" cover the 2015 export and older mirrors.
STORKREDS_ID = (field_at("Kode"), field_at("Id"), field_at("Nummer"), field_at("StorkredsId"))
OPSTILLINGSKREDS_ID = (field_at("Kode"), field_at("Id"), field_at("Nummer"), field_at("OpstillingskredsId"))
OPSTILLINGSKREDS_PARENT = (
    field_at("StorkredsReference", "Kode"),
    field_at("StorkredsId"),
    field_at("StorkredsKode"),
)
OMRAADE_KOMMUNE = (field_at("Kommune", "Navn"), field_at("Kommunenavn"))
OMRAADE_ID = (field_at("Nummer"), field_at("Id"), field_at("Kode"), field_at("AfstemningsomraadeNummer"))
OMRAADE_PARENT = (
    field_at("OpstillingskredsReference", "Kode"),
    field_at("OpstillingskredsId"),
    field_at("OpstillingskredsKode"),
)

ROSTER_PARTIES = (field_at("Valg", "IndenforParti"), field_at("IndenforParti"))
ROSTER_OUTSIDE = (field_at("Valg", "UdenforParti"), field_at("UdenforParti"))
PARTY_NAME = (field_at("Navn"), field_at("PartiNavn"), field_at("Parti", "Navn"))
PARTY_LETTER = (field_at("Bogstav"), field_at("Parti", "Bogstav"))
CANDIDATE_ID = (field_at("Id"), field_at("KandidatId"))

RESULT_KOMMUNE = (field_at("Kommune", "Navn"), field_at("Kommunenavn"))
RESULT_OMRAADE = (field_at("Afstemningsomraade", "Navn"), field_at("Afstemningsomraadenavn"))
RESULT_OMRAADE_ID = (
    field_at("Afstemningsomraade", "Nummer"),
    field_at("Afstemningsomraade", "Id"),
    field_at("AfstemningsomraadeNummer"),
)
RESULT_PARTY_NAME = (field_at("Navn"), field_at("PartiNavn"))
RESULT_OUTSIDE = (field_at("KandidaterUdenforParti"), field_at("UdenforParti"))


def records_of(payload: Any) -> list:
    """Accept either a bare list or an object carrying the list under "data"."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    return []


def list_of(value: Any) -> list:
    return value if isinstance(value, list) else []


def candidates_of(value: Any) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, dict) and isinstance(value.get("Kandidater"), list):
        return value["Kandidater"]
    return []


# plain decimal notation only; no digit separators or non-ASCII digits
_NUMBER = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


def coerce_votes(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        return max(int(value), 0) if math.isfinite(value) else 0
    s = normalize_text(value)
    if not _NUMBER.fullmatch(s):
        return 0
    f = float(s)
    return max(int(f), 0) if math.isfinite(f) else 0


# --- source discovery -------------------------------------------------------


@dataclass
class YearSources:
    year: int
    storkreds: Path
    opstillingskreds: Path
    afstemningsomraade: Path
    candidate_files: list[Path] = field(default_factory=list)
    result_files: list[Path] = field(default_factory=list)


def list_files(root: Path) -> list[Path]:
    if not root.is_dir():
        return []
    return sorted(p for p in root.rglob("*") if p.is_file())


def _in_dir(path: Path, dirname: str) -> bool:
    return any(part.lower() == dirname for part in path.parent.parts)


def discover_sources(
    year: int,
    files: list[Path],
    overrides: dict[str, str] | None = None,
    root: Path | None = None,
) -> YearSources:
    """Map each dataset role to a file, explicit overrides first, then filename needles.

    Needles are matched against the path relative to `root` when given.
    """
    overrides = overrides or {}
    rel = {f: (f.relative_to(root) if root is not None else f) for f in files}
    found: dict[str, Path] = {}
    for role, needles in DATASET_ROLES.items():
        if overrides.get(role):
            path = Path(overrides[role])
            if path.is_file():
                found[role] = path
            else:
                logger.error("[%s] configured %s file does not exist: %s", year, role, path)
            continue
        for f in files:
            low = rel[f].as_posix().lower()
            if all(n in low for n in needles):
                found[role] = f
                break

    missing = [role for role in DATASET_ROLES if role not in found]
    if missing:
        logger.error("[%s] geography files found: %s", year, {r: str(p) for r, p in found.items()})
        raise MissingGeographyError(year, missing, found)

    json_files = [f for f in files if f.suffix.lower() == ".json"]
    return YearSources(
        year=year,
        storkreds=found["storkreds"],
        opstillingskreds=found["opstillingskreds"],
        afstemningsomraade=found["afstemningsomraade"],
        candidate_files=[f for f in json_files if _in_dir(rel[f], CANDIDATE_DIR)],
        result_files=[f for f in json_files if _in_dir(rel[f], RESULT_DIR)],
    )


def load_source_overrides(path: Path | None) -> dict[str, dict[str, str]]:
    if path is None:
        return {}
    data = load_json(path)
    if not isinstance(data, dict) or not all(isinstance(roles, dict) for roles in data.values()):
        raise ValueError(f"{path}: expected an object keyed by year, each mapping role -> path")
    unknown = {role for roles in data.values() for role in roles} - set(DATASET_ROLES)
    if unknown:
        raise ValueError(f"{path}: unknown dataset roles {sorted(unknown)}")
    return {str(year): {role: str(p) for role, p in roles.items()} for year, roles in data.items()}


def load_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


# --- geography --------------------------------------------------------------


@dataclass
class GeographyIndex:
    constituency_by_id: dict[str, str] = field(default_factory=dict)
    sub_constituency_by_id: dict[str, dict] = field(default_factory=dict)
    polling_district_by_key: dict[tuple[str, str], dict] = field(default_factory=dict)

    def resolve(self, kommune: str, omraade: str) -> tuple[str, str, dict]:
        district = self.polling_district_by_key.get((kommune, omraade), {})
        kreds = self.sub_constituency_by_id.get(district.get("opstillingskreds_id"), {})
        storkreds = self.constituency_by_id.get(kreds.get("storkreds_id"), "")
        return storkreds, kreds.get("navn", ""), district


def _id(value: Any) -> str | None:
    s = normalize_text(value)
    return s or None


def build_geography_index(storkredse: Any, opstillingskredse: Any, omraader: Any) -> GeographyIndex:
    index = GeographyIndex()

    for s in records_of(storkredse):
        sid = _id(first_present(s, STORKREDS_ID))
        if sid is None:
            continue
        index.constituency_by_id[sid] = normalize_text(s.get("Navn"))

    for o in records_of(opstillingskredse):
        oid = _id(first_present(o, OPSTILLINGSKREDS_ID))
        if oid is None:
            continue
        index.sub_constituency_by_id[oid] = {
            "navn": normalize_text(o.get("Navn")),
            "storkreds_id": _id(first_present(o, OPSTILLINGSKREDS_PARENT)),
        }

    for a in records_of(omraader):
        kommune = normalize_text(first_present(a, OMRAADE_KOMMUNE))
        navn = normalize_text(a.get("Navn") if isinstance(a, dict) else None)
        if not kommune or not navn:
            continue
        index.polling_district_by_key[(kommune, navn)] = {
            "navn": navn,
            "id": normalize_text(first_present(a, OMRAADE_ID)),
            "opstillingskreds_id": _id(first_present(a, OMRAADE_PARENT)),
        }

    logger.info(
        "indexed %d storkredse, %d opstillingskredse, %d afstemningsomraader",
        len(index.constituency_by_id),
        len(index.sub_constituency_by_id),
        len(index.polling_district_by_key),
    )
    return index


# --- candidates -------------------------------------------------------------


@dataclass
class CandidateIndex:
    candidate_by_id: dict[str, dict] = field(default_factory=dict)
    party_letter_by_name: dict[str, str] = field(default_factory=dict)

    def party_letter(self, party_name: str) -> str:
        return self.party_letter_by_name.get(party_name.lower(), "")


def build_candidate_index(payloads: Iterable[Any]) -> CandidateIndex:
    index = CandidateIndex()
    for j in payloads:
        for p in list_of(first_present(j, ROSTER_PARTIES)):
            pnavn = normalize_text(first_present(p, PARTY_NAME))
            letter = normalize_text(first_present(p, PARTY_LETTER))
            if pnavn:
                index.party_letter_by_name[pnavn.lower()] = letter
            for k in candidates_of(p.get("Kandidater") if isinstance(p, dict) else None):
                kid = normalize_text(first_present(k, CANDIDATE_ID))
                if not kid:
                    continue
                index.candidate_by_id[kid] = {
                    "navn": normalize_text(k.get("Navn")),
                    "parti": pnavn,
                    "parti_bogstav": letter,
                }

        for k in candidates_of(first_present(j, ROSTER_OUTSIDE)):
            kid = normalize_text(first_present(k, CANDIDATE_ID))
            if not kid:
                continue
            index.candidate_by_id[kid] = {
                "navn": normalize_text(k.get("Navn")),
                "parti": OUTSIDE_PARTY_NAME,
                "parti_bogstav": OUTSIDE_PARTY_LETTER,
            }
    return index


# --- result rows ------------------------------------------------------------


@dataclass
class BuildStats:
    year: int
    result_files: int = 0
    rows: int = 0
    skipped_records: int = 0
    skipped_candidates: int = 0
    roster_candidates: int = 0
    kredse_written: int = 0
    storkredse_written: int = 0
    unresolved_districts: Counter = field(default_factory=Counter)
    roster_misses: Counter = field(default_factory=Counter)

    def as_report(self) -> dict:
        return {
            "year": self.year,
            "counts": {
                "result_files": self.result_files,
                "rows": self.rows,
                "skipped_records": self.skipped_records,
                "skipped_candidates": self.skipped_candidates,
                "roster_candidates": self.roster_candidates,
                "kredse_written": self.kredse_written,
                "storkredse_written": self.storkredse_written,
            },
            "unresolved_districts_top": [
                {"kommune": k, "afstemningsomraade": a, "rows": n}
                for (k, a), n in self.unresolved_districts.most_common(200)
            ],
            "roster_misses_top": [{"kandidat": k, "rows": n} for k, n in self.roster_misses.most_common(200)],
        }


def group_key(row: dict) -> tuple[str, str]:
    return row["storkreds"], row["kreds"]


def _candidate_row(base: dict, k: Any, candidates: CandidateIndex, parti: str, letter: str, stats: BuildStats | None):
    if not isinstance(k, dict):
        return None
    kid = normalize_text(first_present(k, CANDIDATE_ID))
    embedded = normalize_text(k.get("Navn"))
    if not kid and not embedded:
        logger.debug("skipping candidate entry without id or name in %s", base["valgsted_navn"])
        if stats is not None:
            stats.skipped_candidates += 1
        return None

    info = candidates.candidate_by_id.get(kid) if kid else None
    if info is None:
        if stats is not None and candidates.candidate_by_id:
            stats.roster_misses[kid or embedded] += 1
        info = {"navn": embedded, "parti": parti, "parti_bogstav": letter}

    return {
        **base,
        "kandidat_navn": info["navn"] or embedded,
        "parti": info["parti"] or parti,
        "parti_bogstav": info["parti_bogstav"] or letter,
        "stemmer": coerce_votes(k.get("Stemmer")),
    }


def build_rows(
    payload: Any,
    geography: GeographyIndex,
    candidates: CandidateIndex,
    stats: BuildStats | None = None,
) -> list[dict]:
    """Resolve one afstemningsomraade result into rows, one per candidate or party list."""
    vr = payload.get("Valgresultater") if isinstance(payload, dict) else None
    if vr is None:
        vr = payload
    kommune = normalize_text(first_present(vr, RESULT_KOMMUNE))
    omraade = normalize_text(first_present(vr, RESULT_OMRAADE))
    if not kommune or not omraade:
        logger.warning("skipping result record without kommune/afstemningsomraade (kommune=%r, omraade=%r)", kommune, omraade)
        if stats is not None:
            stats.skipped_records += 1
        return []

    storkreds, kreds, district = geography.resolve(kommune, omraade)
    if not district and stats is not None:
        stats.unresolved_districts[(kommune, omraade)] += 1
    valgsted_id = normalize_text(first_present(vr, RESULT_OMRAADE_ID)) or district.get("id") or omraade
    base = {"storkreds": storkreds, "kreds": kreds, "valgsted_id": valgsted_id, "valgsted_navn": omraade}

    rows: list[dict] = []
    for p in list_of(vr.get("IndenforParti")):
        if not isinstance(p, dict):
            continue
        pnavn = normalize_text(first_present(p, RESULT_PARTY_NAME))
        letter = normalize_text(p.get("Bogstav")) or candidates.party_letter(pnavn)

        if p.get("Partistemmer") is not None:
            rows.append(
                {
                    **base,
                    "kandidat_navn": PARTY_LIST_NAME,
                    "parti": pnavn,
                    "parti_bogstav": letter,
                    "stemmer": coerce_votes(p["Partistemmer"]),
                }
            )

        for k in list_of(p.get("Kandidater")):
            row = _candidate_row(base, k, candidates, pnavn, letter, stats)
            if row is not None:
                rows.append(row)

    for k in candidates_of(first_present(vr, RESULT_OUTSIDE)):
        row = _candidate_row(base, k, candidates, OUTSIDE_PARTY_NAME, OUTSIDE_PARTY_LETTER, stats)
        if row is not None:
            rows.append(row)

    return rows


# --- aggregation / output ---------------------------------------------------


def group_rows(rows: Iterable[dict]) -> dict[tuple[str, str], list[dict]]:
    groups: dict[tuple[str, str], list[dict]] = {}
    for row in rows:
        groups.setdefault(group_key(row), []).append(row)
    return groups


def group_by_constituency(groups: dict[tuple[str, str], list[dict]]) -> dict[str, list[dict]]:
    """Concatenate kreds groups per storkreds, in kreds order, without re-summing."""
    by_stork: dict[str, list[dict]] = {}
    for (stork, _kreds), rows in groups.items():
        by_stork.setdefault(stork, []).extend(rows)
    return by_stork


def kreds_table_path(out_root: Path, year: int, storkreds: str, kreds: str) -> Path:
    return out_root / str(year) / slugify(storkreds) / f"{slugify(kreds)}_allepartier.csv"


def storkreds_table_path(out_root: Path, year: int, storkreds: str) -> Path:
    return out_root / str(year) / f"{slugify(storkreds)}_allepartier.csv"


def write_csv(path: Path, rows: list[dict]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=HEADER, lineterminator="\n", extrasaction="ignore")
        writer.writeheader()
        writer.writerows(rows)


def write_tables(out_root: Path, year: int, rows: Iterable[dict], stats: BuildStats | None = None) -> list[Path]:
    groups = group_rows(rows)
    written: list[Path] = []
    for (stork, kreds), kreds_rows in groups.items():
        path = kreds_table_path(out_root, year, stork, kreds)
        write_csv(path, kreds_rows)
        written.append(path)

    by_stork = group_by_constituency(groups)
    for stork, stork_rows in by_stork.items():
        path = storkreds_table_path(out_root, year, stork)
        write_csv(path, stork_rows)
        written.append(path)

    if stats is not None:
        stats.kredse_written = len(groups)
        stats.storkredse_written = len(by_stork)
    return written


# --- year build -------------------------------------------------------------


def build_year(year: int, raw_root: Path, out_root: Path, overrides: dict[str, str] | None = None) -> BuildStats:
    year_root = raw_root / str(year)
    sources = discover_sources(year, list_files(year_root), overrides, root=year_root)
    stats = BuildStats(year=year)

    geography = build_geography_index(
        load_json(sources.storkreds),
        load_json(sources.opstillingskreds),
        load_json(sources.afstemningsomraade),
    )
    candidates = build_candidate_index(load_json(f) for f in sources.candidate_files)
    stats.roster_candidates = len(candidates.candidate_by_id)
    if not sources.candidate_files:
        logger.info("[%s] no candidate rosters, using names from results", year)

    rows: list[dict] = []
    for f in sources.result_files:
        rows.extend(build_rows(load_json(f), geography, candidates, stats))
        stats.result_files += 1
    stats.rows = len(rows)

    write_tables(out_root, year, rows, stats)
    return stats


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Build Folketingsvalg CSV tables from raw JSON exports")
    ap.add_argument("--raw-root", default="data/raw/ft")
    ap.add_argument("--out-root", default="data/ft")
    ap.add_argument("--years", type=int, nargs="+", default=DEFAULT_YEARS)
    ap.add_argument("--sources-config", default=None, help="JSON mapping year -> dataset role -> path")
    ap.add_argument("--report-dir", default=None, help="Write ft_<year>_quality.json here")
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        overrides = load_source_overrides(Path(args.sources_config) if args.sources_config else None)
    except (ValueError, OSError) as e:
        print(f"fail: {e}", file=sys.stderr)
        return 2
    failures: list[int] = []

    for year in args.years:
        try:
            stats = build_year(year, Path(args.raw_root), Path(args.out_root), overrides.get(str(year)))
        except (MissingGeographyError, ValueError, OSError) as e:
            failures.append(year)
            print(f"[{year}] fail: {e}", file=sys.stderr)
            continue

        if args.report_dir:
            report_path = Path(args.report_dir) / f"ft_{year}_quality.json"
            report_path.parent.mkdir(parents=True, exist_ok=True)
            report_path.write_text(json.dumps(stats.as_report(), ensure_ascii=False, indent=2), encoding="utf-8")
            print(f"wrote {report_path}")

        print(
            f"[{year}] rows={stats.rows} storkredse={stats.storkredse_written} kredse={stats.kredse_written} "
            f"skipped={stats.skipped_records} unresolved_districts={len(stats.unresolved_districts)}"
        )

    print(f"done: success={len(args.years) - len(failures)} fail={len(failures)}")
    if failures:
        print("failed years:", ", ".join(str(y) for y in failures), file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
