"""Data subject rights engine — intake, verification, export, erasure, consent."""

from src.compliance.consent import consent_ledger
from src.compliance.registry import request_registry
from src.compliance.service import ComplianceService, build_compliance_service

__all__ = ["ComplianceService", "build_compliance_service", "consent_ledger", "request_registry"]
