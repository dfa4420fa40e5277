"""
Schema validation tests for Identity Reconciliation API
Covers request cleanup/validation and response serialization
"""

import pytest
from pydantic import ValidationError

from schemas import ContactRecord, ContactResponse, ErrorResponse, IdentifyRequest, IdentifyResponse
from models import Contact
from models.base import utcnow


@pytest.mark.parametrize("payload", [
    {"email": "test@example.com", "phoneNumber": "+1234567890"},
    {"email": "user@domain.org"},
    {"phoneNumber": "+91-987-654-3210"},
    {"phoneNumber": "(555) 123 4567"},
])
def test_identify_request_accepts_valid_payloads(payload):
    request = IdentifyRequest(**payload)
    assert request.email or request.phoneNumber


@pytest.mark.parametrize("payload", [
    {},
    {"email": None, "phoneNumber": None},
    {"email": "null", "phoneNumber": ""},
    {"email": "invalid-email"},
    {"email": "missing@tld"},
    {"phoneNumber": "123"},
    {"phoneNumber": "+1-555-LAMBDA"},
    {"phoneNumber": "12+34567890"},
])
def test_identify_request_rejects_invalid_payloads(payload):
    with pytest.raises(ValidationError):
        IdentifyRequest(**payload)


def test_identify_request_normalizes_values():
    request = IdentifyRequest(email="  Doc@Zamazon.COM ", phoneNumber=1234567890)
    assert request.email == "doc@zamazon.com"
    assert request.phoneNumber == "1234567890"


def test_null_strings_become_none():
    request = IdentifyRequest(email="null", phoneNumber="+1234567890")
    assert request.email is None


def test_invalid_email_error_names_field():
    with pytest.raises(ValidationError) as exc_info:
        IdentifyRequest(email="not-an-email", phoneNumber="+1234567890")
    assert exc_info.value.errors()[0]["loc"] == ("email",)


def test_identify_response_serialization():
    contact = ContactResponse(
        primaryContactId=1,
        emails=["primary@example.com", "secondary@example.com"],
        phoneNumbers=["+1234567890"],
        secondaryContactIds=[2, 3]
    )
    data = IdentifyResponse(contact=contact).model_dump()
    assert data == {
        "contact": {
            "primaryContactId": 1,
            "emails": ["primary@example.com", "secondary@example.com"],
            "phoneNumbers": ["+1234567890"],
            "secondaryContactIds": [2, 3]
        }
    }

    assert IdentifyResponse.model_validate_json(IdentifyResponse(contact=contact).model_dump_json()).contact == contact


def test_contact_record_reads_model_attributes():
    now = utcnow()
    contact = Contact(
        id=7,
        email="a@x.com",
        phone_number=None,
        linked_id=3,
        link_precedence="secondary",
        created_at=now,
        updated_at=now
    )
    record = ContactRecord.model_validate(contact)
    assert record.model_dump() == {
        "id": 7,
        "email": "a@x.com",
        "phoneNumber": None,
        "linkedId": 3,
        "linkPrecedence": "secondary",
        "createdAt": now,
        "updatedAt": now
    }


def test_error_response_details_are_optional():
    error = ErrorResponse(error="InternalServerError", message="Unable to process request at this time")
    assert error.model_dump(exclude_none=True) == {
        "error": "InternalServerError",
        "message": "Unable to process request at this time"
    }
