"""Unified error codes and custom exceptions.

Error code ranges:
  1xxx: Invalid argument (malformed or missing caller input)
  2xxx: Not found (a referenced id does not resolve)
  3xxx: Invalid state (entities exist but the transition is forbidden)
"""

from collections.abc import Iterable


class AppError(Exception):
    """Base application error."""

    def __init__(
        self,
        code: int,
        message: str,
        http_status: int = 500,
    ) -> None:
        self.code = code
        self.message = message
        self.http_status = http_status
        super().__init__(message)


# --- Error kinds ---

class InvalidArgumentError(AppError):
    def __init__(self, message: str, code: int = 1001) -> None:
        super().__init__(code, message, 400)


class NotFoundError(AppError):
    def __init__(self, message: str, code: int = 2000) -> None:
        super().__init__(code, message, 404)


class InvalidStateError(AppError):
    def __init__(self, message: str, code: int = 3000, http_status: int = 422) -> None:
        super().__init__(code, message, http_status)


# --- 2xxx: Not found ---

class AssociationNotFoundError(NotFoundError):
    def __init__(self, association_id: int) -> None:
        super().__init__(f"Association not found: {association_id}", 2001)


class MemberNotFoundError(NotFoundError):
    def __init__(self, member_id: int) -> None:
        super().__init__(f"Member not found: {member_id}", 2002)


class CategoriesNotFoundError(NotFoundError):
    def __init__(self, missing_ids: Iterable[int]) -> None:
        self.missing_ids = list(missing_ids)
        super().__init__(f"Some categories not found: {self.missing_ids}", 2003)


class OfferNotFoundError(NotFoundError):
    def __init__(self, offer_id: int) -> None:
        super().__init__(f"Offer not found: {offer_id}", 2004)


class DemandNotFoundError(NotFoundError):
    def __init__(self, demand_id: int) -> None:
        super().__init__(f"Demand not found: {demand_id}", 2005)


# --- 3xxx: Invalid state ---

class MemberWithoutAssociationError(InvalidStateError):
    def __init__(self, member_id: int) -> None:
        super().__init__(f"Member {member_id} has no association", 3001)


class OfferNotOpenError(InvalidStateError):
    def __init__(self, offer_id: int, status: str) -> None:
        super().__init__(f"Offer {offer_id} is not OPEN (status={status})", 3002)


class DuplicatePendingDemandError(InvalidStateError):
    def __init__(self, offer_id: int, member_id: int) -> None:
        super().__init__(
            f"Member {member_id} already has a PENDING demand for offer {offer_id}",
            3003,
            409,
        )


class DemandNotCancellableError(InvalidStateError):
    def __init__(self, demand_id: int, status: str) -> None:
        super().__init__(
            f"Demand {demand_id} in status {status} cannot be cancelled", 3004
        )


class DemandWithoutOfferError(InvalidStateError):
    def __init__(self, demand_id: int) -> None:
        super().__init__(f"Demand {demand_id} has no offer", 3005)


class NotAuthorizedError(InvalidStateError):
    def __init__(self, member_id: int, offer_id: int) -> None:
        super().__init__(
            f"Member {member_id} is not allowed to validate offer {offer_id}",
            3006,
            403,
        )


class RepresenterNotInAssociationError(InvalidStateError):
    def __init__(self, member_id: int, association_id: int) -> None:
        super().__init__(
            f"Member {member_id} does not belong to association {association_id}",
            3007,
        )
