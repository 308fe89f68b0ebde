"""
Merchant Key Extractor - Groups transaction descriptions by merchant

Keys are only used to sort transactions before batching so that repeated
charges from the same merchant ("UBER *TRIP", "UBER *EATS") land in the same
batch and the classifier can group them into a single suggestion.

The key never influences the classification itself.

Rule order matters - known merchants first, generic "first word" last.
"""
import re
from dataclasses import dataclass
from typing import Callable, List


@dataclass(frozen=True)
class MerchantRule:
    """A pattern and the function deriving the key from its match"""
    name: str
    pattern: re.Pattern
    extract: Callable[[re.Match, str], str]


def _literal(key: str) -> Callable[[re.Match, str], str]:
    return lambda _match, _desc: key


def _pg_merchant(match: re.Match, _desc: str) -> str:
    return match.group(1).upper() if match.group(1) else "PG*"


def _first_word(match: re.Match, desc: str) -> str:
    words = match.group(1).split()
    if words:
        return words[0]
    words = desc.split()
    return words[0] if words else desc


MERCHANT_RULES: List[MerchantRule] = [
    MerchantRule("uber", re.compile(r"^UBER\s*\*"), _literal("UBER")),
    MerchantRule("ifood", re.compile(r"IFOOD"), _literal("IFOOD")),
    MerchantRule("rappi", re.compile(r"RAPPI"), _literal("RAPPI")),
    MerchantRule("netflix", re.compile(r"NETFLIX"), _literal("NETFLIX")),
    MerchantRule("spotify", re.compile(r"SPOTIFY"), _literal("SPOTIFY")),
    MerchantRule("amazon", re.compile(r"AMAZON"), _literal("AMAZON")),
    MerchantRule("youtube", re.compile(r"YOUTUBE"), _literal("YOUTUBE")),
    MerchantRule("google", re.compile(r"^GOOGLE\s*\*"), _literal("GOOGLE")),
    MerchantRule("mercadolivre", re.compile(r"MERCADOLIVRE|MERCPAGO"), _literal("MERCADOLIVRE")),
    MerchantRule("pix", re.compile(r"^PAG\*"), _literal("PAG*PIX")),
    MerchantRule("picpay", re.compile(r"PICPAY"), _literal("PICPAY")),
    MerchantRule("nubank", re.compile(r"NUBANK"), _literal("NUBANK")),
    MerchantRule("pg", re.compile(r"^PG\s*\*\s*(\w+)"), _pg_merchant),
    # Generic fallback: leading alphabetic word(s)
    MerchantRule("first_word", re.compile(r"^([A-Z]+(?:\s*[A-Z]+)?)"), _first_word),
]


def extract_merchant_key(description: str) -> str:
    """
    Derive a normalized merchant key from a transaction description.

    Examples:
        "Uber *Trip Help.Uber.com" -> "UBER"
        "NETFLIX.COM"              -> "NETFLIX"
        "PG *LOJA CENTRAL"         -> "LOJA"
        "SUPERMERCADO ABC 123"     -> "SUPERMERCADO"
        "123 MAIN ST"              -> "123"
        "   "                      -> ""
    """
    desc = (description or "").strip().upper()
    if not desc:
        return ""

    for rule in MERCHANT_RULES:
        match = rule.pattern.search(desc)
        if match:
            return rule.extract(match, desc)

    words = desc.split()
    return words[0] if words else desc
