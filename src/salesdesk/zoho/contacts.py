from __future__ import annotations

import logging
from typing import Any, Optional

from ..config.runtime_config import ContactsCfg
from ..orders.schema import Customer
from .client import ZohoClient
from .errors import ContactResolutionError, RemoteApiError, ValidationError, indicates_created

logger = logging.getLogger(__name__)


def _norm(value: Any) -> str:
    return str(value or "").strip().lower()


def _has_primary_email(contact: dict[str, Any]) -> bool:
    for person in contact.get("contact_persons") or []:
        if person.get("is_primary_contact") and str(person.get("email") or "").strip():
            return True
    return False


class ContactResolver:
    """
    Maps a loosely specified customer to one Zoho contact id.

    Lookup goes email first, then an exact (trimmed, case-insensitive) name
    match over a broad text search. Zoho's ``search_text`` is fuzzy, so a hit
    is only accepted when ``contact_name`` equals the requested name; binding
    an order to a near-duplicate is worse than creating a new contact.
    """

    def __init__(self, client: ZohoClient, cfg: Optional[ContactsCfg] = None):
        self.client = client
        self.cfg = cfg or ContactsCfg()

    async def find_by_email(self, email: str) -> Optional[str]:
        data = await self.client.get(
            "/contacts", {"email": email, "page": 1, "per_page": self.cfg.email_lookup_limit}
        )
        contacts = data.get("contacts") or []
        needle = _norm(email)
        for c in contacts:
            known = {_norm(c.get("email"))} | {_norm(p.get("email")) for p in c.get("contact_persons") or []}
            known.discard("")
            # list rows without any email are trusted to the server-side filter
            if c.get("contact_id") and (not known or needle in known):
                return str(c["contact_id"])
        return None

    async def find_by_exact_name(self, name: str) -> Optional[str]:
        data = await self.client.get(
            "/contacts", {"search_text": name, "page": 1, "per_page": self.cfg.name_search_limit}
        )
        contacts = data.get("contacts") or []
        needle = _norm(name)
        for c in contacts:
            if _norm(c.get("contact_name")) == needle and c.get("contact_id"):
                return str(c["contact_id"])
        logger.info(f"No exact name match for {name!r} among {len(contacts)} candidates")
        return None

    async def lookup(self, customer: Customer) -> Optional[str]:
        if customer.email:
            contact_id = await self.find_by_email(customer.email)
            if contact_id:
                logger.info(f"Contact found by email {customer.email}: {contact_id}")
                return contact_id
        if customer.name:
            contact_id = await self.find_by_exact_name(customer.name)
            if contact_id:
                logger.info(f"Contact found by exact name {customer.name!r}: {contact_id}")
                return contact_id
        return None

    def _primary_person(self, customer: Customer) -> dict[str, Any]:
        return {
            "first_name": customer.name or self.cfg.default_person_name,
            "email": customer.email,
            "is_primary_contact": True,
        }

    def creation_payload(self, customer: Customer) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "contact_name": customer.name or customer.email or self.cfg.default_name,
            "contact_type": "customer",
        }
        if customer.email:
            payload["email"] = customer.email
            # most Zoho screens show the email of the primary contact person
            payload["contact_persons"] = [self._primary_person(customer)]
        if customer.phone:
            payload["phone"] = customer.phone
        return payload

    async def create(self, customer: Customer) -> Optional[str]:
        """Create the contact; returns None when Zoho stored it but gave no id back."""
        try:
            data = await self.client.post("/contacts", self.creation_payload(customer))
        except RemoteApiError as e:
            if not indicates_created(e.message):
                raise
            logger.warning(f"Contact create returned HTTP {e.status} but reports it was added; re-querying")
            return None
        contact = data.get("contact") or {}
        if contact.get("contact_id"):
            logger.info(f"Contact created: {contact['contact_id']}")
            return str(contact["contact_id"])
        return None

    async def enrich(self, contact_id: str, customer: Customer) -> bool:
        """Align email/phone and ensure a primary contact person with email. True when patched."""
        data = await self.client.get(f"/contacts/{contact_id}")
        contact = data.get("contact") or {}
        update: dict[str, Any] = {}

        if customer.email and customer.email != str(contact.get("email") or "").strip():
            update["email"] = customer.email
        if customer.phone and not str(contact.get("phone") or "").strip():
            update["phone"] = customer.phone
        if customer.email and not _has_primary_email(contact):
            update["contact_persons"] = [self._primary_person(customer)]

        if not update:
            return False
        await self.client.put(f"/contacts/{contact_id}", update)
        logger.info(f"Contact {contact_id} enriched with {sorted(update)}")
        return True

    async def _enrich_quietly(self, contact_id: str, customer: Customer) -> None:
        try:
            await self.enrich(contact_id, customer)
        except Exception as e:
            # the id is already usable; a failed patch only affects display
            logger.warning(f"Contact enrichment failed for {contact_id}: {e}")

    async def ensure(self, customer: Customer) -> str:
        if not customer.has_identity():
            raise ValidationError("Contact lookup requires at least a name or an email.")

        contact_id = await self.lookup(customer)
        if not contact_id:
            contact_id = await self.create(customer) or await self.lookup(customer)
        if not contact_id:
            raise ContactResolutionError()

        await self._enrich_quietly(contact_id, customer)
        return contact_id
