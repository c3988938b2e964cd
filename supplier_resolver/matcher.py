"""Supplier Matcher.

Resolves a vendor reference to an existing supplier in the tenant:
1. Company number, then VAT number (authoritative once matched)
2. Exact normalized name against names and trading aliases
3. Fuzzy name similarity against every active supplier

A false auto-match merges two distinct vendors, which is worse than
deferring to a human. Near-ties and scores between the review floor and
the match floor are therefore skipped rather than guessed.
"""

import sqlite3
import time
from typing import List, Optional, Tuple

from core.observability.logging import get_logger
from core.observability.metrics import record_processing_time
from core.storage import Database
from dedup.scoring import vendor_similarity
from supplier_resolver.constants import ConfidenceScores
from supplier_resolver.db import SupplierRepository
from supplier_resolver.models import (
    DEFAULT_MATCHING_CONFIG,
    MatchingConfig,
    MatchMethod,
    MatchOutcome,
    MatchResult,
    Supplier,
    SupplierCandidate,
)
from supplier_resolver.normalize import (
    is_sparse_name,
    normalize_company_number,
    normalize_supplier_name,
    normalize_vat_number,
)

logger = get_logger(__name__)


class SupplierMatcher:
    """Finds the canonical supplier for a vendor name and identifiers.

    Example:
        matcher = SupplierMatcher(db)
        result = matcher.match("t1", "Acme Widgets Ltd", company_number="12345678")

        if result.outcome == MatchOutcome.MATCHED:
            print(result.supplier_id, result.confidence)
    """

    def __init__(
        self,
        database: Database,
        config: MatchingConfig = DEFAULT_MATCHING_CONFIG,
        repository: Optional[SupplierRepository] = None,
    ):
        self.database = database
        self.config = config
        self.repository = repository or SupplierRepository()

    def match(
        self,
        tenant_id: str,
        name: Optional[str],
        company_number: Optional[str] = None,
        vat_number: Optional[str] = None,
        conn: Optional[sqlite3.Connection] = None,
    ) -> MatchResult:
        """Match a vendor reference.

        Args:
            tenant_id: Tenant to search
            name: Vendor name as seen on the document
            company_number: Registered company number, if known
            vat_number: VAT registration number, if known
            conn: Join an open unit of work instead of reading on its own

        Returns:
            MatchResult; ``result.action`` says whether to match, create or skip
        """
        start_time = time.time()
        normalized = normalize_supplier_name(name)
        company_number = normalize_company_number(company_number)
        vat_number = normalize_vat_number(vat_number)

        with self.database.connection(conn) as c:
            result = self._match_identifiers(c, tenant_id, normalized, company_number, vat_number)
            if result is None:
                result = self._match_name(c, tenant_id, normalized, company_number)

        record_processing_time("supplier_match", (time.time() - start_time) * 1000)
        logger.info("Supplier match decided", extra_fields={
            "tenant_id": tenant_id,
            "normalized_name": normalized,
            "outcome": result.outcome.value,
            "supplier_id": result.supplier_id,
            "method": result.method.value if result.method else None,
            "confidence": result.confidence,
        })
        return result

    def _match_identifiers(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        normalized: str,
        company_number: Optional[str],
        vat_number: Optional[str],
    ) -> Optional[MatchResult]:
        if company_number:
            supplier = self.repository.find_active_by_company_number(conn, tenant_id, company_number)
            if supplier:
                return self._matched(
                    supplier, normalized, MatchMethod.COMPANY_NUMBER,
                    ConfidenceScores.SUPPLIER_MATCHED,
                    f"Company number {company_number} matches '{supplier.display_name}'",
                )

        if vat_number:
            # A supplier registered under a different company number is a different legal entity
            suppliers = [
                s for s in self.repository.find_active_by_vat_number(conn, tenant_id, vat_number)
                if not company_number or s.company_number in (None, company_number)
            ]
            if suppliers:
                supplier = max(
                    suppliers,
                    key=lambda s: max(
                        vendor_similarity(normalized, s.normalized_name),
                        vendor_similarity(normalized, s.display_name),
                    ),
                )
                return self._matched(
                    supplier, normalized, MatchMethod.VAT_NUMBER,
                    ConfidenceScores.SUPPLIER_MATCHED,
                    f"VAT number {vat_number} matches '{supplier.display_name}'",
                )

        return None

    def _match_name(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        normalized: str,
        company_number: Optional[str] = None,
    ) -> MatchResult:
        if is_sparse_name(normalized, self.config.min_name_length):
            return MatchResult(
                outcome=MatchOutcome.INSUFFICIENT_DATA,
                confidence=ConfidenceScores.INSUFFICIENT_DATA,
                reason="Name too sparse to match or create a supplier",
                normalized_name=normalized,
            )

        exact = self.repository.find_active_by_name(conn, tenant_id, normalized)
        if exact and _registered_elsewhere(exact, company_number):
            # Same name, different legal entity: a second supplier cannot take the name
            return MatchResult(
                outcome=MatchOutcome.AMBIGUOUS,
                confidence=ConfidenceScores.LOW_MATCH,
                reason=(
                    f"Conflicting company number: '{exact.display_name}' is registered as "
                    f"{exact.company_number}, not {company_number}"
                ),
                normalized_name=normalized,
                candidates=[SupplierCandidate(
                    supplier_id=exact.id, matched_name=exact.display_name, score=1.0,
                )],
            )
        if exact:
            return self._matched(
                exact, normalized, MatchMethod.EXACT_NAME,
                ConfidenceScores.SUPPLIER_MATCHED,
                f"Exact name match: '{exact.display_name}'",
            )

        candidates = self._score_suppliers(conn, tenant_id, normalized, company_number)
        if not candidates or candidates[0].score < self.config.review_floor:
            best = candidates[0].score if candidates else 0.0
            return MatchResult(
                outcome=MatchOutcome.NO_MATCH,
                confidence=ConfidenceScores.NO_MATCH,
                reason=f"No supplier above review floor (best {best:.2f})",
                normalized_name=normalized,
                candidates=candidates,
            )

        best = candidates[0]
        if best.score < self.config.match_floor:
            return MatchResult(
                outcome=MatchOutcome.LOW_CONFIDENCE,
                confidence=ConfidenceScores.LOW_MATCH,
                reason=f"Best match '{best.matched_name}' ({best.score:.2f}) below match floor",
                normalized_name=normalized,
                candidates=candidates,
            )

        runner_up = candidates[1] if len(candidates) > 1 else None
        if (
            runner_up is not None
            and runner_up.score >= self.config.match_floor
            and best.score - runner_up.score <= self.config.tie_margin
        ):
            return MatchResult(
                outcome=MatchOutcome.AMBIGUOUS,
                confidence=ConfidenceScores.LOW_MATCH,
                reason=(
                    f"'{best.matched_name}' ({best.score:.2f}) and "
                    f"'{runner_up.matched_name}' ({runner_up.score:.2f}) are too close to call"
                ),
                normalized_name=normalized,
                candidates=candidates,
            )

        return MatchResult(
            outcome=MatchOutcome.MATCHED,
            supplier_id=best.supplier_id,
            confidence=round(best.score * ConfidenceScores.SUPPLIER_MATCHED, 4),
            method=MatchMethod.FUZZY_NAME,
            reason=f"Fuzzy name match: '{best.matched_name}' ({best.score:.2f})",
            normalized_name=normalized,
            candidates=candidates,
        )

    def _score_suppliers(
        self,
        conn: sqlite3.Connection,
        tenant_id: str,
        normalized: str,
        company_number: Optional[str] = None,
    ) -> List[SupplierCandidate]:
        """Best score per supplier across legal name, display name and aliases.

        Suppliers registered under a different company number are left out.
        """
        candidates = []
        for supplier, aliases in self.repository.list_match_candidates(conn, tenant_id):
            if _registered_elsewhere(supplier, company_number):
                continue
            score, matched_name = _best_name_score(normalized, supplier, aliases)
            if score > 0:
                candidates.append(SupplierCandidate(
                    supplier_id=supplier.id,
                    matched_name=matched_name,
                    score=score,
                ))
        candidates.sort(key=lambda c: c.score, reverse=True)
        return candidates

    @staticmethod
    def _matched(
        supplier: Supplier,
        normalized: str,
        method: MatchMethod,
        confidence: float,
        reason: str,
    ) -> MatchResult:
        return MatchResult(
            outcome=MatchOutcome.MATCHED,
            supplier_id=supplier.id,
            confidence=confidence,
            method=method,
            reason=reason,
            normalized_name=normalized,
        )


def _registered_elsewhere(supplier: Supplier, company_number: Optional[str]) -> bool:
    """True when both sides carry a company number and they differ."""
    return bool(company_number and supplier.company_number and supplier.company_number != company_number)


def _best_name_score(normalized: str, supplier: Supplier, aliases: List[str]) -> Tuple[float, str]:
    best_score, best_name = 0.0, supplier.display_name
    for candidate_name in [supplier.legal_name, supplier.display_name, *aliases]:
        score = vendor_similarity(normalized, normalize_supplier_name(candidate_name))
        if score > best_score:
            best_score, best_name = score, candidate_name
    return best_score, best_name
