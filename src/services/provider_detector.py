import re
from dataclasses import dataclass
from loguru import logger
from ..models.invoice import ChargeType, ProviderHint
from .text_normalizer import deshift_text, looks_shifted

TELECOM_PROVIDER_NAME = "Magyar Telekom"
TELECOM_SIGNATURE = re.compile(r"\bTelekom\b|Magyar\s+Telekom", re.IGNORECASE)


@dataclass(frozen=True)
class ProviderSignature:
    pattern: re.Pattern
    provider_name: str
    default_charge_type: ChargeType
    requires_fallback: bool = False

    def to_hint(self) -> ProviderHint:
        return ProviderHint(
            provider_name=self.provider_name,
            default_charge_type=self.default_charge_type,
            requires_fallback=self.requires_fallback,
        )


# Order matters: the first matching signature wins
PROVIDER_SIGNATURES: tuple[ProviderSignature, ...] = (
    ProviderSignature(
        re.compile(r"\bM\s*V\s*M\b|Magyar\s+Villamos\s+M[uű]vek", re.IGNORECASE),
        "MVM",
        ChargeType.UTILITY,
    ),
    ProviderSignature(TELECOM_SIGNATURE, TELECOM_PROVIDER_NAME, ChargeType.UTILITY),
    # MIHŐ invoices carry a shifted text layer; they always go through OCR
    ProviderSignature(
        re.compile(r"\bMIH[ŐO]\b|Miskolci\s+h[őo]szolg[aá]ltat[oó]", re.IGNORECASE),
        "MIHŐ",
        ChargeType.UTILITY,
        requires_fallback=True,
    ),
)


class ProviderDetector:
    """Matches invoice text against the known-provider signature table."""

    def __init__(self, signatures: tuple[ProviderSignature, ...] = PROVIDER_SIGNATURES):
        self.signatures = signatures

    def detect(self, text: str) -> ProviderHint | None:
        if not text:
            return None

        candidates = [text]
        # Only a layer carrying the shifted billing marker is deshifted
        if looks_shifted(text):
            candidates.append(deshift_text(text))

        for candidate in candidates:
            for signature in self.signatures:
                if signature.pattern.search(candidate):
                    logger.debug(
                        "Provider signature matched",
                        provider=signature.provider_name,
                        requires_fallback=signature.requires_fallback,
                    )
                    return signature.to_hint()
        return None

    def is_telecom(self, text: str) -> bool:
        return bool(text) and TELECOM_SIGNATURE.search(text) is not None
