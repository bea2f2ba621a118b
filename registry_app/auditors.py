"""
Auditor verification capabilities.

A verifier answers one question: may this principal approve or revoke?
The registry only calls ``is_auditor_verified``; swap the implementation to
plug in a richer external verification registry.
"""

from typing import Iterable

# Burn address: can never hold authority or act as an auditor
BURN_PRINCIPAL = "SP000000000000000000002Q6VF78"


class SentinelAuditorVerifier:
    """Accept every principal except the burn address."""

    def is_auditor_verified(self, identity: str) -> bool:
        return bool(identity) and identity != BURN_PRINCIPAL


class AllowListAuditorVerifier:
    """Accept only principals on a fixed allow-list."""

    def __init__(self, auditors: Iterable[str]):
        self.auditors = frozenset(a for a in auditors if a and a != BURN_PRINCIPAL)

    def is_auditor_verified(self, identity: str) -> bool:
        return identity in self.auditors


def build_verifier(auditors: Iterable[str]):
    auditors = [a.strip() for a in auditors if a.strip()]
    if auditors:
        return AllowListAuditorVerifier(auditors)
    return SentinelAuditorVerifier()
