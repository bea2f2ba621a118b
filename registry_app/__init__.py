"""
GMO-free certification registry.

Issuance, auditor approval and revocation of certification claims against
farms, products and lab tests, served over a small Flask API.
"""

__version__ = "0.1.0"
