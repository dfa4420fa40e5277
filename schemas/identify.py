"""
Pydantic schemas for the /api/identify and /api/contacts endpoints
Handles request validation and response serialization
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from schemas.validators import validate_email, validate_phone_number


class IdentifyRequest(BaseModel):
    """
    Request schema for the /api/identify endpoint
    Validates that at least one of email or phoneNumber is provided
    Handles "null" strings by converting them to None
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {"email": "doc@zamazon.com", "phoneNumber": "+1234567890"},
                {"email": "doc@zamazon.com", "phoneNumber": None},
                {"email": None, "phoneNumber": "123-456-7890"},
            ]
        }
    )

    email: Optional[str] = Field(
        None,
        description="Customer email address",
        examples=["customer@example.com", None]
    )
    phoneNumber: Optional[str] = Field(
        None,
        description="Customer phone number",
        examples=["+1234567890", "123-456-7890", None]
    )

    @field_validator("email", mode="before")
    @classmethod
    def check_email(cls, v) -> Optional[str]:
        """Lower-case the email and check its shape"""
        return validate_email(v)

    @field_validator("phoneNumber", mode="before")
    @classmethod
    def check_phone_number(cls, v) -> Optional[str]:
        """Accept numbers as strings and check the phone number format"""
        return validate_phone_number(v)

    @model_validator(mode="after")
    def validate_at_least_one_field(self):
        """Ensure at least one of email or phoneNumber is provided"""
        if not self.email and not self.phoneNumber:
            raise ValueError("Either email or phoneNumber must be provided")
        return self


class ContactResponse(BaseModel):
    """
    Consolidated view of one identity chain
    Primary contact values come first in every list
    """
    primaryContactId: int = Field(
        description="ID of the primary contact"
    )
    emails: List[str] = Field(
        default_factory=list,
        description="All email addresses associated with this contact",
        examples=[["customer@example.com", "customer2@example.com"]]
    )
    phoneNumbers: List[str] = Field(
        default_factory=list,
        description="All phone numbers associated with this contact",
        examples=[["+1234567890", "123-456-7890"]]
    )
    secondaryContactIds: List[int] = Field(
        default_factory=list,
        description="IDs of all secondary contacts linked to the primary",
        examples=[[2, 3, 4]]
    )


class IdentifyResponse(BaseModel):
    """Response schema for the /api/identify endpoint"""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "contact": {
                    "primaryContactId": 1,
                    "emails": ["doc@zamazon.com"],
                    "phoneNumbers": ["+1234567890", "+0987654321"],
                    "secondaryContactIds": [2]
                }
            }
        }
    )

    contact: ContactResponse = Field(
        description="Consolidated contact information"
    )


class ContactRecord(BaseModel):
    """A stored contact as returned by /api/contacts"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: Optional[str] = None
    phoneNumber: Optional[str] = Field(None, validation_alias="phone_number")
    linkedId: Optional[int] = Field(None, validation_alias="linked_id")
    linkPrecedence: str = Field(validation_alias="link_precedence")
    createdAt: datetime = Field(validation_alias="created_at")
    updatedAt: datetime = Field(validation_alias="updated_at")


class ContactListResponse(BaseModel):
    """Response schema for the /api/contacts endpoint"""
    contacts: List[ContactRecord]


class ErrorResponse(BaseModel):
    """Error response schema for API errors"""
    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "error": "ValidationError",
                    "message": "Either email or phoneNumber must be provided",
                    "details": {"field": "contact"}
                },
                {
                    "error": "InternalServerError",
                    "message": "Unable to process request at this time"
                }
            ]
        }
    )

    error: str = Field(
        description="Error type or category"
    )
    message: str = Field(
        description="Human-readable error message"
    )
    details: Optional[Dict[str, Any]] = Field(
        None,
        description="Additional error details"
    )
