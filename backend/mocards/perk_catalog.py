"""
Perk catalogue - the fixed set of benefits bundled with every card.

Batch generation and redemption validation both read from here, so the
two can never disagree about which perks a card carries.
"""

from __future__ import annotations


# Order is the order perks are created on a card.
PERK_CATALOG: tuple[str, ...] = (
    "consultation",
    "cleaning",
    "extraction",
    "fluoride",
    "whitening",
    "xray",
    "denture",
    "braces",
)

PERK_LABELS = {
    "consultation": "Dental Consultation",
    "cleaning": "Dental Cleaning",
    "extraction": "Tooth Extraction",
    "fluoride": "Fluoride Treatment",
    "whitening": "Teeth Whitening",
    "xray": "Dental X-Ray",
    "denture": "Denture Service",
    "braces": "Braces Consultation",
}


def is_valid_perk_type(perk_type: str) -> bool:
    return perk_type in PERK_CATALOG


def perk_label(perk_type: str) -> str:
    return PERK_LABELS.get(perk_type, perk_type)
