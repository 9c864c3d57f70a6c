"""Default scoring criteria for both programme tracks.

Each entry is ``(category, criteria name, max marks)``; every track totals
100 marks. Reviewers score criteria manually.
"""
from __future__ import annotations

DEFAULT_CONFIG_NAME = "BIRE Programme - Default Scoring"
DEFAULT_CONFIG_DESCRIPTION = "Foundation and Acceleration track criteria, 100 marks each."

FOUNDATION_CRITERIA: list[tuple[str, str, int]] = [
    ("Commercial Viability", "Proof of Sales (Last 1 year revenue)", 10),
    ("Commercial Viability", "Number of Customers", 10),
    ("Commercial Viability", "External Fundraising (Received)", 5),
    ("Commercial Viability", "Digitization", 5),
    ("Business Model", "Business Model Description", 10),
    ("Market Potential", "Relative Pricing", 7),
    ("Market Potential", "Product Differentiation", 8),
    ("Market Potential", "Threat of Substitutes", 7),
    ("Market Potential", "Ease of Market Entry", 8),
    ("Social Impact", "Environmental Impact", 10),
    ("Social Impact", "Special Groups Employed (Women, Youth, PWD)", 10),
    ("Social Impact", "Business Compliance", 10),
]

ACCELERATION_CRITERIA: list[tuple[str, str, int]] = [
    ("Revenues & Growth", "Revenue", 5),
    ("Revenues & Growth", "Years of Operation", 5),
    ("Revenues & Growth", "Future Potential Sales Growth", 5),
    ("Revenues & Growth", "Funds Raised", 5),
    ("Impact Potential", "Current Youth/Women/PWD Employed", 10),
    ("Impact Potential", "Potential to Create New Jobs (Women/PWD/Youth)", 10),
    ("Scalability", "Market Differentiation", 5),
    ("Scalability", "Competitive Advantage", 5),
    ("Scalability", "Offering Focus", 5),
    ("Scalability", "Sales & Marketing Integration", 5),
    ("Social & Environmental Impact", "Social Impact (Household Income)", 7),
    ("Social & Environmental Impact", "Supplier Involvement", 6),
    ("Social & Environmental Impact", "Environmental Impact", 7),
    ("Business Model", "Uniqueness", 7),
    ("Business Model", "Customer Value Proposition", 7),
    ("Business Model", "Competitive Advantage Strength", 6),
]

DEFAULT_CRITERIA = {
    "foundation": FOUNDATION_CRITERIA,
    "acceleration": ACCELERATION_CRITERIA,
}
