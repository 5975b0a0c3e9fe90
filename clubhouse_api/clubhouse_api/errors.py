"""Typed admission and billing errors.

Every error carries an HTTP status and a stable machine-readable ``code``.
The application-level handler in :mod:`clubhouse_api.main` renders them as::

    {"ok": false, "error": "<code>", "detail": "<message>"}

Support tooling keys off ``error``, so codes must never be reused for a
different failure.
"""

from __future__ import annotations


class AdmissionError(Exception):
    """Base class for all domain errors surfaced to API callers."""

    status_code: int = 400
    code: str = "admission_error"
    default_detail: str = "Request could not be completed"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Single-use tokens
# ---------------------------------------------------------------------------


class TokenError(AdmissionError):
    """A single-use token could not be redeemed."""


class TokenNotFound(TokenError):
    code = "token_not_found"
    default_detail = "Invalid token"


class TokenAlreadyUsed(TokenError):
    code = "token_already_used"
    default_detail = "Already used"


class TokenExpired(TokenError):
    code = "token_expired"
    default_detail = "Expired"


# ---------------------------------------------------------------------------
# Membership and tenants
# ---------------------------------------------------------------------------


class DuplicateMembership(AdmissionError):
    status_code = 409
    code = "duplicate_membership"
    default_detail = "User is already a member of this tenant"


class TenantNotFound(AdmissionError):
    status_code = 404
    code = "tenant_not_found"
    default_detail = "Tenant not found"


class TenantInactive(AdmissionError):
    status_code = 403
    code = "tenant_inactive"
    default_detail = "Tenant is not accepting new members"


class EmailDomainNotAllowed(AdmissionError):
    status_code = 403
    code = "email_domain_not_allowed"
    default_detail = "Email domain is not allowed for this tenant"


class InviteNotFound(AdmissionError):
    status_code = 404
    code = "invite_not_found"
    default_detail = "Invite not found"


class MembershipNotFound(AdmissionError):
    status_code = 403
    code = "membership_not_found"
    default_detail = "You are not a member of this tenant"


class InvalidRole(AdmissionError):
    code = "invalid_role"
    default_detail = "Role cannot be assigned"


class ParentEmailInvalid(AdmissionError):
    code = "parent_email_invalid"
    default_detail = "Parent email must differ from the player's email"


class CodeAllocationError(AdmissionError):
    """Slug or join-code allocation exhausted its attempts."""

    status_code = 500
    code = "code_allocation_failed"
    default_detail = "Could not allocate a unique tenant code"


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


class BillingUnavailable(AdmissionError):
    """The payment processor could not be reached or rejected the call."""

    status_code = 502
    code = "billing_unavailable"
    default_detail = "Billing provider unavailable"


class CustomerNotFound(AdmissionError):
    code = "customer_not_found"
    default_detail = "Customer not found"


class WebhookSignatureError(AdmissionError):
    code = "invalid_signature"
    default_detail = "Signature verification failed"


class WebhookPayloadError(AdmissionError):
    code = "invalid_payload"
    default_detail = "Invalid payload"
