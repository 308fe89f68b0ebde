import pytest

from packages.domain.ai_categorization.merchant_keys import extract_merchant_key


@pytest.mark.parametrize("description,expected", [
    ("UBER *TRIP", "UBER"),
    ("Uber *Trip Help.Uber.com", "UBER"),
    ("UBER* EATS", "UBER"),
    ("IFOOD *RESTAURANTE", "IFOOD"),
    ("PAG*IFOOD", "IFOOD"),
    ("RAPPI BRASIL", "RAPPI"),
    ("NETFLIX.COM", "NETFLIX"),
    ("Spotify AB", "SPOTIFY"),
    ("AMAZON MKTPLACE", "AMAZON"),
    ("GOOGLE *YouTube Premium", "YOUTUBE"),
    ("GOOGLE *Google One", "GOOGLE"),
    ("MERCPAGO*LOJA", "MERCADOLIVRE"),
    ("MERCADOLIVRE*VENDEDOR", "MERCADOLIVRE"),
    ("PAG*JOSE DA SILVA", "PAG*PIX"),
    ("PICPAY*MARIA", "PICPAY"),
    ("NUBANK PAGAMENTO", "NUBANK"),
    ("PG *LOJA CENTRAL", "LOJA"),
    ("SUPERMERCADO ABC 123", "SUPERMERCADO"),
    ("padaria pao quente", "PADARIA"),
    ("123 MAIN ST", "123"),
])
def test_known_and_generic_merchants(description, expected):
    assert extract_merchant_key(description) == expected


@pytest.mark.parametrize("description", ["", "   ", None])
def test_blank_description_has_empty_key(description):
    assert extract_merchant_key(description) == ""


def test_key_is_case_and_whitespace_insensitive():
    assert extract_merchant_key("  netflix.com  ") == extract_merchant_key("NETFLIX.COM")


def test_uber_must_be_a_prefix():
    # "UBER" in the middle of a description is not the Uber rule
    assert extract_merchant_key("POSTO UBERABA *GAS") == "POSTO"
