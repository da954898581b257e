import json
from pathlib import Path

import pytest


STORKREDSE = {
    "data": [
        {"Kode": 1, "Navn": "Københavns Storkreds"},
        {"Kode": 2, "Navn": " Fyns  Storkreds "},
    ]
}

OPSTILLINGSKREDSE = [
    {"Kode": 10, "Navn": "Østerbrokredsen", "StorkredsReference": {"Kode": 1}},
    {"Id": "11", "Navn": "Sundbyvesterkredsen", "StorkredsId": "1"},
    {"Kode": 20, "Navn": "Odense Østkredsen", "StorkredsKode": 2},
    {"Kode": 99, "Navn": "Forældreløs kreds"},
    {"Navn": "Kreds uden id"},
]

AFSTEMNINGSOMRAADER = [
    {"Kommune": {"Navn": "København"}, "Navn": "1. Østerbro", "Nummer": "101", "OpstillingskredsReference": {"Kode": 10}},
    {"Kommunenavn": "København", "Navn": "2. Sundbyvester", "OpstillingskredsId": 11},
    {"Kommune": {"Navn": "Odense"}, "Navn": "Hunderup", "Id": 301, "OpstillingskredsKode": "20"},
    {"Kommune": {"Navn": "Odense"}, "Navn": "Forældreløs", "OpstillingskredsKode": 99},
    {"Navn": "Uden kommune", "OpstillingskredsKode": 20},
]

ROSTER = {
    "Valg": {
        "IndenforParti": [
            {
                "Navn": "Socialdemokratiet",
                "Bogstav": "A",
                "Kandidater": [{"Id": 1001, "Navn": "Mette Frederiksen"}],
            },
            {
                "PartiNavn": "Venstre",
                "Parti": {"Bogstav": "V"},
                "Kandidater": [{"KandidatId": "2001", "Navn": "Lars Løkke Rasmussen"}, {"Navn": "Uden id"}],
            },
        ],
        "UdenforParti": {"Kandidater": [{"Id": 3001, "Navn": "Pia Løsgænger"}]},
    }
}


def result_payload(kommune, omraade, partier=None, udenfor=None, wrap=True):
    vr = {"Kommune": {"Navn": kommune}, "Afstemningsomraade": {"Navn": omraade}, "IndenforParti": partier or []}
    if udenfor is not None:
        vr["KandidaterUdenforParti"] = udenfor
    return {"Valgresultater": vr} if wrap else vr


@pytest.fixture
def geography_payloads():
    return STORKREDSE, OPSTILLINGSKREDSE, AFSTEMNINGSOMRAADER


@pytest.fixture
def roster():
    return ROSTER


def _write(path: Path, payload) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def raw_year(tmp_path):
    """Write a complete raw tree for 2019 and return the raw root."""
    raw = tmp_path / "raw"
    year = raw / "2019"
    _write(year / "Valggeografi" / "Storkreds.json", STORKREDSE)
    _write(year / "Valggeografi" / "Opstillingskreds.json", OPSTILLINGSKREDSE)
    _write(year / "Valggeografi" / "Afstemningsomraade.json", AFSTEMNINGSOMRAADER)
    _write(year / "Kandidatdata" / "kandidater.json", ROSTER)
    _write(
        year / "Valgresultater" / "a_oesterbro.json",
        result_payload(
            "København",
            "1. Østerbro",
            partier=[
                {
                    "Navn": "Socialdemokratiet",
                    "Partistemmer": 1000,
                    "Kandidater": [{"Id": 1001, "Navn": "M. Frederiksen", "Stemmer": 600}],
                },
                {"Navn": 'Liste "Øst", København', "Bogstav": "Ø", "Kandidater": [{"Navn": "Ny", "Stemmer": "12"}]},
            ],
            udenfor=[{"Id": 3001, "Navn": "P. L.", "Stemmer": "7"}],
        ),
    )
    _write(
        year / "Valgresultater" / "b_sundbyvester.json",
        result_payload(
            "København",
            "2. Sundbyvester",
            partier=[{"Navn": "Venstre", "Partistemmer": "250", "Kandidater": [{"KandidatId": 2001, "Stemmer": 90}]}],
        ),
    )
    _write(
        year / "Valgresultater" / "c_hunderup.json",
        result_payload("Odense", "Hunderup", partier=[{"Navn": "venstre", "Kandidater": [{"Id": 2001, "Stemmer": None}]}]),
    )
    _write(
        year / "Valgresultater" / "d_ukendt.json",
        result_payload("Aarhus", "Ukendt sted", partier=[{"Navn": "Venstre", "Partistemmer": 5}]),
    )
    _write(year / "Valgresultater" / "e_uden_kommune.json", {"Valgresultater": {"Afstemningsomraade": {"Navn": "X"}}})
    return raw
