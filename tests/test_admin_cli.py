import json
from datetime import datetime, timedelta, timezone

from placeflow.admin import cli
from placeflow.quality.quarantine import Quarantine


def test_explain_prints_score_and_reasons(capsys):
    first = json.dumps({"name": "La Colombe Restaurant", "phone": "021 794 2390"})
    second = json.dumps({"name": "la   colombe restaurant", "phone": "+27217942390"})
    cli.main(["explain", first, second])
    payload = json.loads(capsys.readouterr().out)
    assert payload["is_duplicate"] is True
    assert payload["score"] == 1.0
    assert payload["reasons"] == ["Same phone number", "Very similar business name"]


def test_dedupe_groups_near_duplicates(tmp_path, capsys):
    path = tmp_path / "places.json"
    path.write_text(json.dumps([
        {"name": "Kloof Street House", "phone": "0214234413", "confidence": 40},
        {"name": "Kloof Street House Restaurant", "phone": "021 423 4413", "confidence": 90},
        {"name": "Test Kitchen", "phone": "0214472337"},
    ]), encoding="utf-8")
    cli.main(["dedupe", str(path)])
    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "input": 3,
        "unique": 2,
        "groups": [["Kloof Street House", "Kloof Street House Restaurant"]],
    }


def test_inspect_rejects_counts_reasons(tmp_path, capsys):
    quarantine_dir = tmp_path / "quarantine"
    quarantine = Quarantine(quarantine_dir)
    quarantine.reject(record={"name": "X"}, reason=["Business name must be between 2 and 100 characters"], source="tripadvisor")
    quarantine.reject(record={"name": "Y"}, reason=["Business name must be between 2 and 100 characters"], source="tripadvisor")
    quarantine.reject(record={"name": "Bad"}, reason=["Phone number must be a valid South African number"], source="manual")
    stale = (datetime.now(timezone.utc) - timedelta(days=30)).strftime("%Y%m%dT%H%M%S%f")
    (quarantine_dir / f"reject_{stale}.json").write_text(
        json.dumps({"source": "tripadvisor", "record": {}, "reason": ["old"]}), encoding="utf-8"
    )

    cli.main(["inspect-rejects", "--quarantine", str(quarantine_dir), "--source", "tripadvisor"])
    payload = json.loads(capsys.readouterr().out)
    assert payload == {"Business name must be between 2 and 100 characters": 2}

    cli.main(["inspect-rejects", "--quarantine", str(quarantine_dir), "--last", "60"])
    payload = json.loads(capsys.readouterr().out)
    assert payload["old"] == 1
    assert payload["Phone number must be a valid South African number"] == 1
