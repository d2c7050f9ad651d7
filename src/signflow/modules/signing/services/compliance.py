from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List
from zoneinfo import ZoneInfo


@dataclass(frozen=True)
class ComplianceInfo:
    jurisdiction: str
    applicable_laws: List[str]
    consent_text: str
    legal_notice: str
    footer_heading: str
    footer_statement: str
    timezone: str
    timezone_label: str


COMPLIANCE_NOTICES: Dict[str, ComplianceInfo] = {
    "US": ComplianceInfo(
        jurisdiction="United States",
        applicable_laws=[
            "Electronic Signatures in Global and National Commerce Act (ESIGN)",
            "Uniform Electronic Transactions Act (UETA)",
        ],
        consent_text=(
            "By signing this document electronically, you consent to the use of electronic "
            "records and signatures in accordance with the ESIGN Act and UETA. You understand "
            "that your electronic signature has the same legal effect as a handwritten signature."
        ),
        legal_notice=(
            "This document has been electronically signed in compliance with applicable federal "
            "and state laws. Electronic signatures are legally binding and enforceable."
        ),
        footer_heading="Electronic Signature Record - ESIGN/UETA",
        footer_statement="Executed under the ESIGN Act and the Uniform Electronic Transactions Act",
        timezone="UTC",
        timezone_label="UTC",
    ),
    "EU": ComplianceInfo(
        jurisdiction="European Union",
        applicable_laws=[
            "eIDAS Regulation (EU) 910/2014",
            "General Data Protection Regulation (GDPR)",
        ],
        consent_text=(
            "By signing this document electronically, you consent to the use of electronic "
            "records and signatures in accordance with the eIDAS Regulation (EU) 910/2014. You "
            "understand that your electronic signature has the same legal effect as a handwritten "
            "signature under EU law."
        ),
        legal_notice=(
            "This document has been electronically signed in compliance with the eIDAS Regulation "
            "and applicable EU member state laws."
        ),
        footer_heading="Electronic Signature Record - eIDAS",
        footer_statement="Executed under eIDAS Regulation (EU) 910/2014",
        timezone="UTC",
        timezone_label="UTC",
    ),
    "IN": ComplianceInfo(
        jurisdiction="India",
        applicable_laws=[
            "Information Technology Act, 2000",
            "Information Technology (Certifying Authorities) Rules, 2000",
        ],
        consent_text=(
            "By signing this document electronically, you consent to the use of electronic "
            "records and signatures in accordance with the Information Technology Act, 2000. You "
            "understand that your electronic signature has the same legal effect as a handwritten "
            "signature under Indian law."
        ),
        legal_notice=(
            "This document has been electronically signed in compliance with the Information "
            "Technology Act, 2000 and applicable Indian laws."
        ),
        footer_heading="Digital Signature Certificate - India Compliance",
        footer_statement="Verified under Information Technology Act, 2000",
        timezone="Asia/Kolkata",
        timezone_label="IST",
    ),
}


def get_compliance_info(jurisdiction: str = "US") -> ComplianceInfo:
    return COMPLIANCE_NOTICES.get((jurisdiction or "US").upper(), COMPLIANCE_NOTICES["US"])


def generate_consent_text(jurisdiction: str = "US") -> str:
    return get_compliance_info(jurisdiction).consent_text


def generate_legal_notice(jurisdiction: str = "US") -> str:
    return get_compliance_info(jurisdiction).legal_notice


def format_signing_time(moment: datetime, jurisdiction: str = "US") -> str:
    """``dd-mm-yyyy HH:MM:SS <TZ>`` en la zona horaria de la jurisdicción."""
    info = get_compliance_info(jurisdiction)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    local = moment.astimezone(ZoneInfo(info.timezone))
    return f"{local.strftime('%d-%m-%Y %H:%M:%S')} {info.timezone_label}"
