"""Root pytest configuration: sample card exports and stop stores."""

import json

import pytest

HEADER = "Datum,Check in,Vertrek,Check uit,Bestemming,Bedrag,Transactie,Kl,Product,Opmerking,Naam,Kaartnummer"

SAMPLE_ROWS = [
    '02-10-2024,08:01,Leidseplein,08:12,Dam,"€ 1,20",Reis,2,"Bus, Tram en Metro reizen",,,3528',
    '02-10-2024,17:40,Dam,17:52,Leidseplein,"€ 1,20",Reis,2,"Bus, Tram en Metro reizen",,,3528',
    '03-10-2024,08:03,Leidseplein,08:14,Dam,"€ 1,20",Reis,2,"Bus, Tram en Metro reizen",,,3528',
    '05-10-2024,10:00,Amsterdam Centraal,10:41,Utrecht Centraal,"€ 8,90",Reis,2,Treinreizen,,,3528',
    '06-10-2024,,,,,"€ 20,00",Opladen,,Klanten Service,Automatisch opladen,,3528',
    '07-10-2024,09:00,Leidseplein,09:10,Nergenshuizen,"€ 1,10",Reis,2,"Bus, Tram en Metro reizen",,,3528',
    'geen datum,09:00,Dam,09:10,Leidseplein,"€ 1,10",Reis,2,"Bus, Tram en Metro reizen",,,3528',
    '12-11-2024,12:00,Onbekend,12:20,Dam,"€ 4,00",Reis,2,"Bus, Tram en Metro reizen",Onvolledige reis,,3528',
]

SAMPLE_COORDS = {
    "Leidseplein": {"lat": 52.3641, "lng": 4.8829, "label": "Leidseplein, Amsterdam", "query": "Leidseplein, Amsterdam, Netherlands"},
    "Dam": {"lat": 52.3731, "lng": 4.8926, "label": "Dam, Amsterdam", "query": "Dam, Amsterdam, Netherlands"},
    "Amsterdam Centraal": {"lat": 52.3791, "lng": 4.9003, "label": "Amsterdam Centraal", "query": "Amsterdam Centraal, Netherlands"},
    "Utrecht Centraal": {"lat": 52.0894, "lng": 5.1100, "label": "Utrecht Centraal", "query": "Utrecht Centraal, Amsterdam, Netherlands"},
}


@pytest.fixture
def trips_csv(tmp_path):
    path = tmp_path / "trips.csv"
    path.write_text(HEADER + "\n" + "\n".join(SAMPLE_ROWS) + "\n", encoding="utf-8")
    return str(path)


@pytest.fixture
def coords_json(tmp_path):
    path = tmp_path / "stopCoords.json"
    path.write_text(
        json.dumps({"generatedAt": "2025-01-01T00:00:00Z", "stops": SAMPLE_COORDS, "unmatched": ["Nergenshuizen"]}),
        encoding="utf-8",
    )
    return str(path)


@pytest.fixture
def sample_coords():
    return dict(SAMPLE_COORDS)
