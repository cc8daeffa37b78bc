"""Static lookup tables: bank domains, indicator keywords, card variants.

All tables are immutable and built once at import time.
"""

from __future__ import annotations

from types import MappingProxyType

# Sender domains of card issuers. A sender matches when its domain equals
# one of these or is a subdomain of one.
BANK_EMAIL_DOMAINS: tuple[str, ...] = (
    # India
    "hdfcbank.com",
    "hdfcbank.net",
    "icicibank.com",
    "sbi.co.in",
    "sbicard.com",
    "onlinesbi.com",
    "axisbank.com",
    "kotak.com",
    "yesbank.in",
    "indusind.com",
    "sc.com",
    "citi.com",
    "citibank.com",
    "hsbc.co.in",
    "rbl.co.in",
    "idfcfirstbank.com",
    "aubank.in",
    "dbs.com",
    "americanexpress.com",
    "aexp.com",
    # United States
    "chase.com",
    "bankofamerica.com",
    "wellsfargo.com",
    "capitalone.com",
    "discover.com",
    "usbank.com",
    "bilt.com",
)

# Email subject/body keywords that make a message worth downloading.
EMAIL_STATEMENT_KEYWORDS: tuple[str, ...] = (
    "credit card statement",
    "card statement",
    "credit card",
    "e-statement",
    "estatement",
    "statement of account",
    "monthly statement",
    "billing statement",
    "billing cycle",
    "reward points",
)

# Content indicators, matched against the lower-cased document sample.
REQUIRED_INDICATORS: tuple[str, ...] = (
    "credit card",
    "card account",
    "card number",
    "billing cycle",
    "statement period",
    "payment due",
    "minimum payment",
)

BANK_NAME_INDICATORS: tuple[str, ...] = (
    "hdfc bank",
    "icici bank",
    "axis bank",
    "state bank",
    "sbi card",
    "kotak mahindra",
    "yes bank",
    "indusind",
    "standard chartered",
    "citibank",
    "hsbc",
    "american express",
    "rbl bank",
    "idfc first",
    "au small finance",
    "chase",
    "bank of america",
    "wells fargo",
    "capital one",
    "discover",
)

POSITIVE_INDICATORS: tuple[str, ...] = (
    "reward points",
    "cashback",
    "credit limit",
    "available credit",
    "total amount due",
    "outstanding balance",
    "transaction details",
    "account summary",
)

NEGATIVE_INDICATORS: tuple[str, ...] = (
    "invoice",
    "purchase order",
    "delivery note",
    "tax invoice",
    "pro forma",
    "quotation",
    "estimate",
)

# Filename fragments used for the cheap filename score.
FILENAME_STATEMENT_HINTS: tuple[str, ...] = (
    "statement",
    "estatement",
    "stmt",
    "card",
    "credit",
    "billing",
)

# Bank-name aliases, checked in order against the normalized name.
BANK_ALIASES: tuple[tuple[str, str], ...] = (
    ("hdfc", "hdfc bank"),
    ("icici", "icici bank"),
    ("axis", "axis bank"),
    ("sbi", "sbi card"),
    ("state bank", "sbi card"),
    ("standard chartered", "standard chartered"),
    ("hsbc", "hsbc"),
    ("kotak", "kotak mahindra bank"),
    ("yes bank", "yes bank"),
    ("indusind", "indusind"),
    ("citi", "citibank"),
    ("citibank", "citibank"),
    ("american express", "amex"),
    ("amex", "amex"),
    ("dbs", "dbs"),
    ("au small", "au small bank"),
    ("au bank", "au small bank"),
    ("capital one", "capital one"),
    ("wells fargo", "wells fargo"),
    ("chase", "chase"),
    ("bilt", "bilt"),
)

CARD_VARIANTS: MappingProxyType[str, tuple[str, ...]] = MappingProxyType(
    {
        "sbi card": (
            "Air India Signature",
            "Etihad Guest Premier",
            "Air India Platinum",
            "Krisflyer SBI Apex",
            "Aurum",
            "Club Vistara",
            "Miles Elite",
            "Krisflyer SBI",
            "Miles",
            "Club Vistara Prime",
            "Etihad Guest",
            "Miles Prime",
        ),
        "axis bank": (
            "Rewards",
            "Horizon",
            "Primus",
            "Vistara",
            "Indian Oil Premium",
            "Vistara Infinite",
            "Olympus",
            "Magnus for Burgundy",
            "Magnus",
            "Burgundy Private - One Card",
            "Burgundy Private NRI",
            "Atlas",
            "Vistara Signature",
            "Miles & More",
            "Reserve",
        ),
        "amex": (
            "Centurion",
            "Membership Rewards",
            "Platinum",
            "Gold",
            "Green",
            "EveryDay Preferred",
            "Business Gold",
            "Business Green Rewards",
            "SmartEarn",
            "EveryDay",
            "Business Platinum",
            "Platinum Travel",
            "Platinum Reserve",
            "Blue Business Plus",
        ),
        "indusind": (
            "Indulge",
            "Iconia",
            "Pioneer Legacy",
            "Tiger",
            "Legend",
            "Crest",
            "Celesta",
            "Pinnacle",
            "Avios Visa Infinite",
            "Club Vistara Explorer",
            "Pioneer Heritage",
        ),
        "icici bank": (
            "Emirates Skywards Sapphiro",
            "Emirates Skywards Rubyx",
            "Times Black",
            "Emeralde Private Metal",
            "Rubyx - Visa",
            "Coral",
            "Rubyx - Mastercard",
            "Emirates Skywards Emeralde",
            "Sapphiro - Visa",
        ),
        "hsbc": (
            "TravelOne",
            "RuPay Platinum",
            "Platinum",
            "Privé",
            "Premier",
        ),
        "kotak mahindra bank": (
            "Solitaire",
            "Kotak Air+",
        ),
        "dbs": ("Vantage",),
        "au small bank": ("AU Zenith+",),
        "hdfc bank": (
            "Biz Black Metal Edition",
            "Diners Club Black",
            "Infinia",
            "Regalia Gold",
            "Regalia",
        ),
        "citibank": (
            "ThankYou Preferred",
            "Double Cash",
            "Custom Cash",
            "Rewards+",
            "AT&T Access",
            "AT&T Access More",
            "Premier",
            "Prestige",
        ),
        "capital one": (
            "Venture X Rewards",
            "Spark Miles for Business",
            "Spark Miles Select for Business",
            "VentureOne Rewards",
            "Venture Rewards",
        ),
        "wells fargo": (
            "Autograph",
            "Autograph Journey",
        ),
        "chase": (
            "Ink Business Cash",
            "Sapphire Reserve",
            "Freedom Flex",
            "Reserve",
            "Sapphire Preferred",
            "Ink Business Preferred",
            "Ink Business Unlimited",
            "Freedom Unlimited",
        ),
        "bilt": ("Bilt",),
    }
)

MONTHS: MappingProxyType[str, int] = MappingProxyType(
    {
        "jan": 1,
        "january": 1,
        "feb": 2,
        "february": 2,
        "mar": 3,
        "march": 3,
        "apr": 4,
        "april": 4,
        "may": 5,
        "jun": 6,
        "june": 6,
        "jul": 7,
        "july": 7,
        "aug": 8,
        "august": 8,
        "sep": 9,
        "sept": 9,
        "september": 9,
        "oct": 10,
        "october": 10,
        "nov": 11,
        "november": 11,
        "dec": 12,
        "december": 12,
    }
)
