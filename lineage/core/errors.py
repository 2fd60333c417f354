from __future__ import annotations

from typing import Any


class LineageError(Exception):
    """Base error for Lineage."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()

    def details(self) -> dict[str, Any] | None:
        # Structured payload rendered alongside the message at the HTTP boundary.
        return None


class MissingIdentifierError(LineageError):
    """A required identifier was not supplied."""

    code = "MISSING_IDENTIFIER"
    status_code = 400


class UnsupportedEntityKindError(LineageError):
    """No ownership resolver is registered for this entity kind."""

    code = "UNSUPPORTED_ENTITY_KIND"
    status_code = 400

    def __init__(self, entity_kind: str) -> None:
        super().__init__(f"Unsupported entity kind: {entity_kind}")
        self.entity_kind = entity_kind


class InvalidRoleError(LineageError):
    """Role is not part of the owner/editor/viewer vocabulary."""

    code = "INVALID_ROLE"
    status_code = 400


class MembershipConflictError(LineageError):
    """Membership change is not allowed."""

    code = "MEMBERSHIP_CONFLICT"
    status_code = 400


class UnauthenticatedError(LineageError):
    """Authentication required."""

    code = "AUTH_UNAUTHORIZED"
    status_code = 401


class EntityNotFoundError(LineageError):
    """Entity or its owning tree could not be resolved."""

    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity_kind: str, message: str | None = None) -> None:
        label = entity_kind.replace("_", " ").capitalize()
        super().__init__(message or f"{label} not found")
        self.entity_kind = entity_kind


class TreeForbiddenError(LineageError):
    """Caller lacks the role required on the tree."""

    code = "TREE_FORBIDDEN"
    status_code = 403

    def __init__(self, *, required: str, current: str | None) -> None:
        if current is None:
            message = "You do not have access to this tree"
        else:
            message = f"This action requires {required} role. You have {current} role."
        super().__init__(message)
        self.required = required
        self.current = current

    def details(self) -> dict[str, Any]:
        return {"required": self.required, "current": self.current}


class QuotaExceededError(LineageError):
    """Insufficient tokens."""

    code = "INSUFFICIENT_TOKENS"
    status_code = 403

    def __init__(self, *, current_balance: int, required: int) -> None:
        super().__init__("Insufficient tokens")
        self.current_balance = current_balance
        self.required = required

    def details(self) -> dict[str, Any]:
        return {"current_balance": self.current_balance, "required": self.required}


class TransientError(LineageError):
    """Datastore unavailable or timed out."""

    code = "TRANSIENT_FAILURE"
    status_code = 500


class InvalidAmountError(LineageError):
    """Token amounts must be non-negative integers."""

    code = "INVALID_AMOUNT"
    status_code = 400


class InvalidCouponError(LineageError):
    """Invalid coupon code."""

    code = "INVALID_COUPON"
    status_code = 403
