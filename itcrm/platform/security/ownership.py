"""Ownership-consistency rules applied before a CRM record is persisted.

Each entity type has exactly one validator taking the principal, the parent
record the new row hangs off, and the proposed owner pair. Validators return
an :class:`OwnershipDecision`; callers turn a denial into an error with
:meth:`OwnershipDecision.enforce`. Admins pass every rule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, assert_never

from itcrm.core.roles import Role
from itcrm.metrics import observe_ownership_rejection
from itcrm.platform.security.context import Principal
from itcrm.platform.security.errors import OwnershipViolationError


logger = logging.getLogger("itcrm.security.ownership")


class OwnedRecord(Protocol):
    sales_manager_id: int
    freelance_consultant_id: int


class DirectoryEntry(Protocol):
    id: int
    manager_id: int | None


@dataclass(frozen=True, slots=True)
class ProposedOwners:
    sales_manager_id: int
    freelance_consultant_id: int


@dataclass(frozen=True, slots=True)
class OwnershipDecision:
    resource: str
    allowed: bool
    code: str | None = None
    reason: str | None = None

    @classmethod
    def allow(cls, resource: str) -> OwnershipDecision:
        return cls(resource=resource, allowed=True)

    @classmethod
    def deny(cls, resource: str, code: str, reason: str) -> OwnershipDecision:
        return cls(resource=resource, allowed=False, code=code, reason=reason)

    def enforce(self) -> None:
        if self.allowed:
            return
        code = self.code or "ownership_violation"
        reason = self.reason or "Ownership rule violated"
        observe_ownership_rejection(resource=self.resource, code=code)
        logger.warning("ownership.rejected", extra={"resource": self.resource, "code": code})
        raise OwnershipViolationError(resource=self.resource, code=code, reason=reason)


CLIENT_COMPANY = "crm.client_company"
CONTACT = "crm.contact"
OPPORTUNITY = "crm.opportunity"


def check_client_company_owners(
    principal: Principal,
    freelancer: DirectoryEntry,
    proposed: ProposedOwners,
) -> OwnershipDecision:
    """A sales manager may only create for themself, with a freelancer from their own team."""

    match principal.role:
        case Role.ADMIN:
            return OwnershipDecision.allow(CLIENT_COMPANY)
        case Role.FREELANCE_CONSULTANT:
            return OwnershipDecision.deny(
                CLIENT_COMPANY,
                "client_company_role_not_allowed",
                "Freelance consultants cannot own client companies they create",
            )
        case Role.SALES_MANAGER:
            if proposed.sales_manager_id != principal.user_id:
                return OwnershipDecision.deny(
                    CLIENT_COMPANY,
                    "client_company_foreign_sales_manager",
                    "A sales manager can only create client companies for themself",
                )
            if freelancer.manager_id != principal.user_id:
                return OwnershipDecision.deny(
                    CLIENT_COMPANY,
                    "client_company_freelancer_not_in_team",
                    "The freelance consultant must belong to the sales manager's team",
                )
            return OwnershipDecision.allow(CLIENT_COMPANY)
        case _:
            assert_never(principal.role)


def check_contact_owners(
    principal: Principal,
    company: OwnedRecord,
    proposed: ProposedOwners,
) -> OwnershipDecision:
    match principal.role:
        case Role.ADMIN:
            return OwnershipDecision.allow(CONTACT)
        case Role.SALES_MANAGER:
            if company.sales_manager_id != principal.user_id:
                return OwnershipDecision.deny(
                    CONTACT,
                    "contact_company_not_owned",
                    "The client company is not managed by the current sales manager",
                )
            if proposed.sales_manager_id != principal.user_id:
                return OwnershipDecision.deny(
                    CONTACT,
                    "contact_sales_manager_mismatch",
                    "salesManagerId must be the current sales manager",
                )
            return OwnershipDecision.allow(CONTACT)
        case Role.FREELANCE_CONSULTANT:
            if company.freelance_consultant_id != principal.user_id:
                return OwnershipDecision.deny(
                    CONTACT,
                    "contact_company_not_owned",
                    "The client company is not assigned to the current freelance consultant",
                )
            if proposed.freelance_consultant_id != principal.user_id:
                return OwnershipDecision.deny(
                    CONTACT,
                    "contact_freelancer_mismatch",
                    "freelanceConsultantId must be the current freelance consultant",
                )
            if proposed.sales_manager_id != company.sales_manager_id:
                return OwnershipDecision.deny(
                    CONTACT,
                    "contact_sales_manager_mismatch",
                    "salesManagerId must match the client company's sales manager",
                )
            return OwnershipDecision.allow(CONTACT)
        case _:
            assert_never(principal.role)


def check_opportunity_owners(
    principal: Principal,
    contact: OwnedRecord,
    proposed: ProposedOwners,
) -> OwnershipDecision:
    match principal.role:
        case Role.ADMIN:
            return OwnershipDecision.allow(OPPORTUNITY)
        case Role.SALES_MANAGER:
            if proposed.sales_manager_id != principal.user_id:
                return OwnershipDecision.deny(
                    OPPORTUNITY,
                    "opportunity_sales_manager_mismatch",
                    "salesManagerId must be the current sales manager",
                )
            if contact.sales_manager_id != principal.user_id:
                return OwnershipDecision.deny(
                    OPPORTUNITY,
                    "opportunity_contact_not_owned",
                    "The contact must belong to the sales manager's team",
                )
            return OwnershipDecision.allow(OPPORTUNITY)
        case Role.FREELANCE_CONSULTANT:
            if proposed.freelance_consultant_id != principal.user_id:
                return OwnershipDecision.deny(
                    OPPORTUNITY,
                    "opportunity_freelancer_mismatch",
                    "freelanceConsultantId must be the current freelance consultant",
                )
            if contact.freelance_consultant_id != principal.user_id:
                return OwnershipDecision.deny(
                    OPPORTUNITY,
                    "opportunity_contact_not_owned",
                    "The contact must be assigned to the current freelance consultant",
                )
            if proposed.sales_manager_id != contact.sales_manager_id:
                return OwnershipDecision.deny(
                    OPPORTUNITY,
                    "opportunity_sales_manager_mismatch",
                    "salesManagerId must match the contact's sales manager",
                )
            return OwnershipDecision.allow(OPPORTUNITY)
        case _:
            assert_never(principal.role)
