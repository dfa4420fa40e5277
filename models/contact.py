"""
Contact model for Identity Reconciliation API
This module defines the Contact database model for storing customer
contact information and managing identity linking relationships.
Supports primary/secondary contact hierarchy and soft delete functionality.
"""

from sqlalchemy import Column, String, Integer, ForeignKey, Index, CheckConstraint

from .base import BaseModel

PRIMARY = "primary"
SECONDARY = "secondary"
LINK_PRECEDENCES = (PRIMARY, SECONDARY)


class Contact(BaseModel):
    """
    Contact model representing customer contact information

    Stores email and phone number data with linking relationships
    to support identity reconciliation. Each contact is either
    'primary' (root of a chain) or 'secondary' (linked to the chain's primary).
    Chains are never deeper than two levels.

    Database Table: contacts
    """
    __tablename__ = "contacts"

    # Contact information fields - at least one must be provided
    phone_number = Column(
        String(20),
        nullable=True,
        index=True,
        comment="Customer phone number as provided"
    )

    email = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Customer email address, lower-cased"
    )

    # Identity linking fields
    linked_id = Column(
        Integer,
        ForeignKey("contacts.id"),
        nullable=True,
        index=True,
        comment="ID of the primary contact this secondary contact links to"
    )

    link_precedence = Column(
        String(10),
        nullable=False,
        default=PRIMARY,
        comment="Either 'primary' (chain root) or 'secondary' (linked contact)"
    )

    __table_args__ = (
        CheckConstraint(
            link_precedence.in_(LINK_PRECEDENCES),
            name="valid_link_precedence"
        ),

        CheckConstraint(
            "(phone_number IS NOT NULL) OR (email IS NOT NULL)",
            name="contact_info_required"
        ),

        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="secondary_must_have_linked_id"
        ),

        Index("ix_contact_email_phone", email, phone_number),
        Index("ix_contact_precedence_linked", link_precedence, linked_id),
    )

    def __repr__(self):
        contact_info = []
        if self.email:
            contact_info.append(f"email={self.email}")
        if self.phone_number:
            contact_info.append(f"phone={self.phone_number}")

        return (
            f"<Contact(id={self.id}, "
            f"{', '.join(contact_info)}, "
            f"precedence={self.link_precedence})>"
        )

    def is_primary(self):
        """Check if this is a primary contact"""
        return self.link_precedence == PRIMARY

    def is_secondary(self):
        """Check if this is a secondary contact"""
        return self.link_precedence == SECONDARY

    def primary_id(self):
        """
        ID of the primary this contact belongs to
        Returns own id for primaries, linked_id for secondaries
        """
        if self.is_primary():
            return self.id
        return self.linked_id

    def age_key(self):
        """Ordering key for "oldest": creation time, then id"""
        return (self.created_at, self.id)
