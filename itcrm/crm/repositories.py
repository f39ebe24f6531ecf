from __future__ import annotations

from itcrm.crm.models import Activity, ClientCategory, ClientCompany, Contact, Opportunity
from itcrm.platform.security.repository import BaseRepository


_DUAL_OWNER_FIELDS = ("sales_manager_id", "freelance_consultant_id")


class ClientCompanyRepository(BaseRepository[ClientCompany]):
    resource = "crm.client_company"
    model = ClientCompany
    owner_fields = _DUAL_OWNER_FIELDS
    not_found_message = "Client company not found"


class ContactRepository(BaseRepository[Contact]):
    resource = "crm.contact"
    model = Contact
    owner_fields = _DUAL_OWNER_FIELDS
    not_found_message = "Contact not found"


class OpportunityRepository(BaseRepository[Opportunity]):
    resource = "crm.opportunity"
    model = Opportunity
    owner_fields = _DUAL_OWNER_FIELDS
    not_found_message = "Opportunity not found"


class ActivityRepository(BaseRepository[Activity]):
    resource = "crm.activity"
    model = Activity
    owner_fields = ("user_id",)
    not_found_message = "Activity not found"


class ClientCategoryRepository(BaseRepository[ClientCategory]):
    """Categories are reference data and carry no owners; only lookups are used."""

    resource = "crm.client_category"
    model = ClientCategory
    not_found_message = "Client category not found"
