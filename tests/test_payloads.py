import pytest

from errors import BadPayload, PayloadTooLarge, UnsupportedMediaType
from payloads import (
    MAX_ATTACHMENT_BYTES,
    DigitalSubmission,
    coerce_section,
    content_length_exceeds_limit,
    normalize_attachment,
    normalize_digital,
)

PDF = b"%PDF-1.7\n"


@pytest.mark.parametrize("raw,expected", [(2, 2), ("3", 3), (" 4 ", 4), (1.0, 1), ("-1", -1)])
def test_coerce_section_accepts_integers(raw, expected):
    assert coerce_section(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "two", "1.5", 1.5, True, [1]])
def test_coerce_section_rejects_non_integers(raw):
    with pytest.raises(BadPayload):
        coerce_section(raw)


def test_attachment_at_ceiling_is_accepted():
    data = b"x" * MAX_ATTACHMENT_BYTES

    sub = normalize_attachment("2", "scan.pdf", "application/pdf", data)

    assert sub.size == MAX_ATTACHMENT_BYTES
    assert sub.section_number == 2


def test_attachment_one_byte_over_ceiling_is_rejected():
    with pytest.raises(PayloadTooLarge):
        normalize_attachment("2", "scan.pdf", "application/pdf", b"x" * (MAX_ATTACHMENT_BYTES + 1))


def test_uppercase_extension_without_media_type_is_accepted():
    sub = normalize_attachment("1", "x.PDF", "", PDF)

    assert sub.filename == "x.PDF"


def test_pdf_media_type_with_other_extension_is_accepted():
    sub = normalize_attachment("1", "x.txt", "application/pdf", PDF)

    assert sub.media_type == "application/pdf"


def test_non_pdf_is_rejected():
    with pytest.raises(UnsupportedMediaType):
        normalize_attachment("1", "x.txt", "text/plain", b"hello")


def test_missing_or_empty_file_is_bad_payload():
    with pytest.raises(BadPayload, match="Missing PDF file"):
        normalize_attachment("1", None, None, None)
    with pytest.raises(BadPayload, match="Empty file"):
        normalize_attachment("1", "x.pdf", "application/pdf", b"")


def test_attachment_needs_integer_section():
    with pytest.raises(BadPayload):
        normalize_attachment("abc", "x.pdf", "application/pdf", PDF)


def test_digital_accepts_responses_or_answers():
    assert normalize_digital({"sectionNumber": 1, "responses": {"q1": "a"}}) == DigitalSubmission(1, {"q1": "a"})
    assert normalize_digital({"sectionNumber": "1", "answers": {"q1": 2}}).answers == {"q1": 2}


def test_digital_answers_may_be_absent():
    assert normalize_digital({"sectionNumber": 3}).answers == {}


@pytest.mark.parametrize("body", [[], "x", {"responses": {}}, {"sectionNumber": 1, "responses": ["a"]}])
def test_digital_rejects_malformed_bodies(body):
    with pytest.raises(BadPayload):
        normalize_digital(body)


def test_content_length_check():
    assert content_length_exceeds_limit("11", 10)
    assert not content_length_exceeds_limit("10", 10)
    assert not content_length_exceeds_limit(None, 10)
    assert not content_length_exceeds_limit("nonsense", 10)
