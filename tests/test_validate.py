from placeflow.quality.validate import RecordValidator
from placeflow.storage.models import CandidateRecord


def test_complete_record_passes():
    validator = RecordValidator()
    record = CandidateRecord(
        name="La Colombe",
        phone="+27 21 794 2390",
        email="reservations@lacolombe.co.za",
        website="https://www.lacolombe.co.za",
        address="Silvermist Estate, Constantia Main Rd, Cape Town",
        rating=4.8,
        confidence=80,
    )
    report = validator.validate(record)
    assert report.ok
    assert report.errors == []
    assert report.warnings == []


def test_field_errors_are_reported_together():
    validator = RecordValidator()
    record = CandidateRecord(
        name="X",
        phone="12345",
        email="not-an-email",
        website="ftp://example.com",
        rating=7,
    )
    report = validator.validate(record)
    assert not report.ok
    assert sorted(report.errors) == sorted([
        "Business name must be between 2 and 100 characters",
        "Phone number must be a valid South African number",
        "Email must be a valid email address",
        "Website must be a valid URL",
        "Rating must be between 0 and 5",
    ])


def test_missing_name_is_an_error():
    report = RecordValidator().validate(CandidateRecord(phone="0214234413", address="30 Kloof St, Cape Town"))
    assert report.errors == ["Business name must be between 2 and 100 characters"]


def test_warnings_do_not_fail_the_record():
    report = RecordValidator().validate(CandidateRecord(name="Kloof Street House", confidence=30))
    assert report.ok
    assert report.warnings == [
        "No contact details (phone or email)",
        "Missing address",
        "Low source confidence (30)",
    ]
