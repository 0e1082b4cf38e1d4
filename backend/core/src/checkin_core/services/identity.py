"""Identity resolution from raw scanner input.

Resolution runs in strict order and stops at the first hit:

1. State ID scans (AAMVA PDF417): stored scan hash or raw value.
2. Exact first/last name among customers with the scanned date of birth.
3. Fuzzy first/last name (Jaro-Winkler) among the same DOB candidates.
4. Anything else is a membership barcode: exact membership number match.

Every match passes the ban check before it is returned. A state ID that is
expired, or shows a customer under 18, turns any outcome into an ERROR
carrying that reason. `resolve_scan` never creates customers; creation
happens only through the start and scan-id flows (`customer_for_id_scan`,
`customer_for_start`).
"""

import datetime as dt
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from checkin_core.models import (
    AuthError,
    Customer,
    ErrorCode,
    IdScanIssue,
    MatchStrategy,
    ScanResultType,
    ScanType,
    ValidationError,
)
from checkin_core.models.items import new_id, utcnow
from checkin_core.utils.logging import get_logger
from checkin_core.utils.names import names_equal, score_names, split_name
from checkin_core.utils.scan import (
    ExtractedIdentity,
    compute_scan_hash,
    is_state_id_scan,
    normalize_scan_text,
    parse_aamva,
    parse_membership_number,
)

if TYPE_CHECKING:
    from .store import CheckinStore

logger = get_logger(__name__)

ID_SCAN_ISSUE_MESSAGES = {
    IdScanIssue.ID_EXPIRED: "ID is expired. Please provide an unexpired ID.",
    IdScanIssue.UNDERAGE: "Customer is under 18. Please provide an ID showing 18+.",
}


class ScanCandidate(BaseModel):
    """A possible match offered to the employee for re-selection."""

    customer_id: str
    name: str
    dob: dt.date | None = None
    membership_number: str | None = None
    score: float = Field(..., description="Mean name similarity")


class ScanResult(BaseModel):
    """Outcome of resolving one scan."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    result: ScanResultType
    scan_type: ScanType | None = None
    normalized_raw_scan_text: str | None = None
    id_scan_hash: str | None = None
    customer: Customer | None = None
    candidates: list[ScanCandidate] = Field(default_factory=list)
    extracted: ExtractedIdentity | None = None
    membership_candidate: str | None = None
    match_strategy: MatchStrategy | None = None
    enriched: bool = False
    id_scan_issue: IdScanIssue | None = None
    error_code: str | None = None
    error_message: str | None = None


def id_scan_issue(
    extracted: ExtractedIdentity | None,
    today: dt.date,
    customer: Customer | None = None,
) -> IdScanIssue | None:
    """Reason the presented ID cannot be used for check-in, if any."""
    dob = (extracted.dob if extracted else None) or (customer.dob if customer else None)
    if dob is not None:
        age = today.year - dob.year - ((today.month, today.day) < (dob.month, dob.day))
        if age < 18:
            return IdScanIssue.UNDERAGE
    if extracted and extracted.expiration_date and extracted.expiration_date < today:
        return IdScanIssue.ID_EXPIRED
    return None


class IdentityResolver:
    """Matches scans against the customers table."""

    def __init__(self, store: "CheckinStore") -> None:
        self.store = store

    def resolve_scan(
        self,
        raw_text: str,
        selected_customer_id: str | None = None,
        now: dt.datetime | None = None,
    ) -> ScanResult:
        """Resolve raw scanner output to a customer.

        Args:
            raw_text: Raw scanner output
            selected_customer_id: Employee's pick after MULTIPLE_MATCHES
            now: Clock override

        Returns:
            ScanResult (MATCHED, NO_MATCH, MULTIPLE_MATCHES or ERROR)

        Raises:
            ValidationError: Empty scan, or a selection that does not match
        """
        now = now or utcnow()
        normalized = normalize_scan_text(raw_text or "")
        if not normalized:
            raise ValidationError(ErrorCode.INVALID_REQUEST, "Empty scan input")

        if not is_state_id_scan(normalized):
            if selected_customer_id:
                raise ValidationError(ErrorCode.INVALID_SELECTION)
            return self._resolve_membership(normalized, now)

        extracted = parse_aamva(normalized)
        scan_hash = compute_scan_hash(normalized)
        base: dict[str, Any] = {
            "scan_type": ScanType.STATE_ID,
            "normalized_raw_scan_text": normalized,
            "id_scan_hash": scan_hash,
            "extracted": extracted,
        }

        if selected_customer_id:
            chosen = self._validate_selection(selected_customer_id, extracted)
            return self._matched(chosen, MatchStrategy.SELECTED, extracted, now, base)

        by_scan = self._match_by_scan(scan_hash, normalized)
        if by_scan is not None:
            return self._matched(by_scan, MatchStrategy.HASH, extracted, now, base)

        if extracted.first_name and extracted.last_name and extracted.dob:
            candidates = self.store.customers_with_dob(extracted.dob)

            for candidate in candidates:
                first, last = split_name(candidate.name)
                if names_equal(extracted.first_name, extracted.last_name, first, last):
                    return self._matched(
                        candidate, MatchStrategy.EXACT_NAME_DOB, extracted, now, base
                    )

            fuzzy = self._fuzzy_candidates(extracted, candidates)
            if len(fuzzy) == 1:
                customer, _ = fuzzy[0]
                return self._matched(
                    customer, MatchStrategy.FUZZY_NAME_DOB, extracted, now, base
                )
            if len(fuzzy) > 1:
                logger.info("Scan matched %d customers by fuzzy name", len(fuzzy))
                return self._gated(
                    ScanResultType.MULTIPLE_MATCHES,
                    id_scan_issue(extracted, now.date()),
                    candidates=[
                        ScanCandidate(
                            customer_id=customer.customer_id,
                            name=customer.name,
                            dob=customer.dob,
                            membership_number=customer.membership_number,
                            score=round(score, 4),
                        )
                        for customer, score in fuzzy
                    ],
                    **base,
                )

        return self._gated(
            ScanResultType.NO_MATCH, id_scan_issue(extracted, now.date()), **base
        )

    def customer_for_id_scan(
        self, raw_text: str, now: dt.datetime | None = None
    ) -> tuple[Customer | None, ScanResult]:
        """Resolve an ID scan, creating the customer on NO_MATCH.

        Returns (None, result) for MULTIPLE_MATCHES, which needs an employee pick.
        An expired or underage ID still records the customer before it is refused.

        Raises:
            AuthError: Matched customer is banned (BANNED), or the ID is not
                valid for check-in (UNDERAGE, ID_EXPIRED)
            ValidationError: No name can be derived from the scan
        """
        now = now or utcnow()
        result = self.resolve_scan(raw_text, now=now)
        if result.error_code == ErrorCode.BANNED.value:
            raise AuthError(ErrorCode.BANNED, result.error_message)
        if result.result == ScanResultType.MULTIPLE_MATCHES:
            return None, result

        customer = result.customer
        if customer is None and not result.candidates:
            customer = self._customer_from_scan(result, now)
        if result.id_scan_issue is not None:
            raise AuthError(ErrorCode(result.id_scan_issue.value), result.error_message)
        return customer, result

    def _customer_from_scan(self, result: ScanResult, now: dt.datetime) -> Customer:
        extracted = result.extracted or ExtractedIdentity()
        name = extracted.display_name
        if not name and extracted.id_number:
            name = f"Customer {extracted.id_number}"
        if not name:
            raise ValidationError(
                ErrorCode.INVALID_REQUEST, "Unable to determine customer name from ID scan"
            )
        return self._create_customer(
            name,
            now,
            dob=extracted.dob,
            id_scan_hash=result.id_scan_hash,
            id_scan_value=result.normalized_raw_scan_text,
            membership_number=None,
        )

    def customer_for_start(
        self,
        id_scan_value: str | None,
        membership_scan_value: str | None,
        now: dt.datetime | None = None,
    ) -> Customer:
        """Find or create the customer for a start request without an explicit id.

        Order: stored scan value/hash, then membership number, then a new
        customer named after the scan value.
        """
        now = now or utcnow()
        membership_number = (
            parse_membership_number(normalize_scan_text(membership_scan_value))
            if membership_scan_value
            else None
        )

        customer: Customer | None = None
        normalized = normalize_scan_text(id_scan_value) if id_scan_value else ""
        if normalized:
            customer = self._match_by_scan(compute_scan_hash(normalized), normalized)
        if customer is None and membership_number:
            customer = self.store.find_customer_by_membership(membership_number)
        if customer is not None:
            self.check_not_banned(customer, now)
            return customer

        return self._create_customer(
            normalized or "Customer",
            now,
            id_scan_hash=compute_scan_hash(normalized) if normalized else None,
            id_scan_value=normalized or None,
            membership_number=membership_number,
        )

    @staticmethod
    def check_not_banned(customer: Customer, now: dt.datetime) -> None:
        """Raises AuthError(BANNED) while the ban is in effect."""
        if customer.is_banned(now) and customer.banned_until is not None:
            raise AuthError(
                ErrorCode.BANNED,
                f"Customer is banned until {customer.banned_until.isoformat()}",
            )

    # Internal helpers

    def _match_by_scan(self, scan_hash: str, normalized: str) -> Customer | None:
        by_hash = self.store.customers_by("id_scan_hash-index", "id_scan_hash", scan_hash)
        if by_hash:
            return by_hash[0]
        by_value = self.store.customers_by("id_scan_value-index", "id_scan_value", normalized)
        return by_value[0] if by_value else None

    def _fuzzy_candidates(
        self, extracted: ExtractedIdentity, candidates: list[Customer]
    ) -> list[tuple[Customer, float]]:
        """DOB candidates whose names pass the fuzzy thresholds, best first."""
        scored: list[tuple[Customer, float]] = []
        for candidate in candidates:
            first, last = split_name(candidate.name)
            if not first or not last:
                continue
            score = score_names(extracted.first_name, extracted.last_name, first, last)
            if score.passes:
                scored.append((candidate, score.overall))
        # Stable: ties keep oldest-customer-first order from the store
        return sorted(scored, key=lambda pair: pair[1], reverse=True)

    def _validate_selection(self, customer_id: str, extracted: ExtractedIdentity) -> Customer:
        """Re-check an employee's pick against the scan's DOB and fuzzy name."""
        chosen = self.store.get_customer(customer_id)
        if (
            chosen is None
            or not (extracted.dob and extracted.first_name and extracted.last_name)
            or chosen.dob != extracted.dob
        ):
            raise ValidationError(ErrorCode.INVALID_SELECTION)
        first, last = split_name(chosen.name)
        if not first or not last:
            raise ValidationError(ErrorCode.INVALID_SELECTION)
        if not score_names(extracted.first_name, extracted.last_name, first, last).passes:
            raise ValidationError(ErrorCode.INVALID_SELECTION)
        return chosen

    def _matched(
        self,
        customer: Customer,
        strategy: MatchStrategy,
        extracted: ExtractedIdentity,
        now: dt.datetime,
        base: dict[str, Any],
    ) -> ScanResult:
        if customer.is_banned(now):
            return self._banned(customer, base)
        enriched = self._enrich(
            customer, base["id_scan_hash"], base["normalized_raw_scan_text"], extracted, now
        )
        logger.info("Scan matched customer %s via %s", customer.customer_id, strategy.value)
        return self._gated(
            ScanResultType.MATCHED,
            id_scan_issue(extracted, now.date(), customer),
            customer=customer,
            match_strategy=strategy,
            enriched=enriched,
            **base,
        )

    @staticmethod
    def _gated(result: ScanResultType, issue: IdScanIssue | None, **fields: Any) -> ScanResult:
        """`result`, or an ERROR naming the issue when the ID cannot be used."""
        if issue is None:
            return ScanResult(result=result, **fields)
        logger.info("Scan refused (%s): %s", result.value, issue.value)
        return ScanResult(
            result=ScanResultType.ERROR,
            id_scan_issue=issue,
            error_code=issue.value,
            error_message=ID_SCAN_ISSUE_MESSAGES[issue],
            **fields,
        )

    def _banned(self, customer: Customer, base: dict[str, Any]) -> ScanResult:
        logger.info("Scan matched banned customer %s", customer.customer_id)
        until = customer.banned_until.isoformat() if customer.banned_until else "further notice"
        return ScanResult(
            result=ScanResultType.ERROR,
            error_code=ErrorCode.BANNED.value,
            error_message=f"Customer is banned until {until}",
            **base,
        )

    def _enrich(
        self,
        customer: Customer,
        scan_hash: str,
        normalized: str,
        extracted: ExtractedIdentity,
        now: dt.datetime,
    ) -> bool:
        """Backfill scan identifiers and DOB so the next scan matches instantly.

        Idempotent: writes only when something is missing or different.
        """
        updates: dict[str, Any] = {}
        if customer.id_scan_hash != scan_hash:
            updates["id_scan_hash"] = scan_hash
        if customer.id_scan_value != normalized:
            updates["id_scan_value"] = normalized
        if customer.dob is None and extracted.dob is not None:
            updates["dob"] = extracted.dob
        if not updates:
            return False

        enriched = customer.model_copy(update={**updates, "updated_at": now})
        self.store.save_customer(enriched)
        for key, value in updates.items():
            setattr(customer, key, value)
        return True

    def _create_customer(
        self,
        name: str,
        now: dt.datetime,
        dob: dt.date | None = None,
        id_scan_hash: str | None = None,
        id_scan_value: str | None = None,
        membership_number: str | None = None,
    ) -> Customer:
        customer = Customer(
            customer_id=new_id("CUS"),
            name=name,
            dob=dob,
            membership_number=membership_number,
            id_scan_hash=id_scan_hash,
            id_scan_value=id_scan_value,
            created_at=now,
            updated_at=now,
        )
        self.store.save_customer(customer)
        logger.info("Created customer %s", customer.customer_id)
        return customer

    def _resolve_membership(self, normalized: str, now: dt.datetime) -> ScanResult:
        candidate = parse_membership_number(normalized) or normalized
        base: dict[str, Any] = {
            "scan_type": ScanType.MEMBERSHIP,
            "normalized_raw_scan_text": normalized,
            "membership_candidate": candidate,
        }
        customer = self.store.find_customer_by_membership(candidate)
        if customer is None:
            return ScanResult(result=ScanResultType.NO_MATCH, **base)
        if customer.is_banned(now):
            return self._banned(customer, base)
        return ScanResult(
            result=ScanResultType.MATCHED,
            customer=customer,
            match_strategy=MatchStrategy.MEMBERSHIP,
            **base,
        )
