"""Rate & policy source - static country tables behind a time-boxed cache."""

import logging
from datetime import datetime, timezone

from cbds.config import settings
from cbds.schemas.rates import ConversionResult, CountryRates, RateFilters, RegimePolicy, TaxRate
from cbds.storage.cache import TTLCache
from cbds.utils.canonical import canonical_json

logger = logging.getLogger(__name__)

RATE_VERSION = "2024.1"

# code -> (name, standard, reduced)
EU_VAT: dict[str, tuple[str, float, float]] = {
    "AT": ("Austria", 0.20, 0.10),
    "BE": ("Belgium", 0.21, 0.06),
    "BG": ("Bulgaria", 0.20, 0.09),
    "HR": ("Croatia", 0.25, 0.05),
    "CY": ("Cyprus", 0.19, 0.05),
    "CZ": ("Czechia", 0.21, 0.12),
    "DK": ("Denmark", 0.25, 0.25),
    "EE": ("Estonia", 0.22, 0.09),
    "FI": ("Finland", 0.24, 0.10),
    "FR": ("France", 0.20, 0.055),
    "DE": ("Germany", 0.19, 0.07),
    "GR": ("Greece", 0.24, 0.06),
    "HU": ("Hungary", 0.27, 0.05),
    "IE": ("Ireland", 0.23, 0.09),
    "IT": ("Italy", 0.22, 0.10),
    "LV": ("Latvia", 0.21, 0.12),
    "LT": ("Lithuania", 0.21, 0.09),
    "LU": ("Luxembourg", 0.17, 0.08),
    "MT": ("Malta", 0.18, 0.05),
    "NL": ("Netherlands", 0.21, 0.09),
    "PL": ("Poland", 0.23, 0.08),
    "PT": ("Portugal", 0.23, 0.06),
    "RO": ("Romania", 0.19, 0.09),
    "SK": ("Slovakia", 0.20, 0.10),
    "SI": ("Slovenia", 0.22, 0.095),
    "ES": ("Spain", 0.21, 0.10),
    "SE": ("Sweden", 0.25, 0.12),
}
EU_MEMBERS = frozenset(EU_VAT)

EU_DUTY_RATE = 0.04

US_STATE_TAX = {
    "CA": 0.0725,
    "NY": 0.04,
    "TX": 0.0625,
    "FL": 0.06,
    "WA": 0.065,
    "IL": 0.0625,
    "NJ": 0.06625,
    "PA": 0.06,
}


def _build_tables() -> dict[str, CountryRates]:
    common = {"version": RATE_VERSION, "effective_date": "2024-01-01"}
    tables: dict[str, CountryRates] = {}
    for code, (name, standard, reduced) in EU_VAT.items():
        tables[code] = CountryRates(
            country_code=code,
            name=name,
            currency="EUR",
            is_eu_member=True,
            vat_rates={"standard": standard, "reduced": reduced, "zero": 0.0},
            duty_rate=EU_DUTY_RATE,
            source="EU VAT e-commerce package",
            **common,
        )
    tables["GB"] = CountryRates(
        country_code="GB",
        name="United Kingdom",
        currency="GBP",
        vat_rates={"standard": 0.20, "reduced": 0.05, "zero": 0.0},
        duty_rate=0.05,
        source="HMRC",
        **common,
    )
    tables["US"] = CountryRates(
        country_code="US",
        name="United States",
        currency="USD",
        duty_rate=0.025,
        consumption_tax=dict(US_STATE_TAX),
        source="US CBP / state revenue departments",
        **common,
    )
    tables["CA"] = CountryRates(
        country_code="CA",
        name="Canada",
        currency="CAD",
        vat_rates={"standard": 0.05, "reduced": 0.05, "zero": 0.0},
        duty_rate=0.06,
        duty_free_threshold=150,
        source="CBSA",
        **common,
    )
    tables["AU"] = CountryRates(
        country_code="AU",
        name="Australia",
        currency="AUD",
        vat_rates={"standard": 0.10, "reduced": 0.0, "zero": 0.0},
        duty_rate=0.05,
        duty_free_threshold=1000,
        source="ABF / ATO",
        **common,
    )
    tables["JP"] = CountryRates(
        country_code="JP",
        name="Japan",
        currency="JPY",
        vat_rates={"standard": 0.10, "reduced": 0.08, "zero": 0.0},
        duty_rate=0.05,
        duty_free_threshold=10000,
        source="Japan Customs",
        **common,
    )
    return tables


REGIME_POLICIES: dict[str, RegimePolicy] = {
    "SECTION_321": RegimePolicy(
        regime="SECTION_321",
        name="Section 321 de minimis",
        countries=["US"],
        threshold=800,
        currency="USD",
        period="DAILY",
        per_recipient=True,
        exempts=["DUTY"],
        over_threshold_status="FAIL",
        pass_documents=["TYPE_86_ENTRY"],
        description="Duty-free entry for shipments up to USD 800 per recipient per day",
    ),
    "IOSS": RegimePolicy(
        regime="IOSS",
        name="Import One-Stop Shop",
        countries=sorted(EU_MEMBERS),
        threshold=150,
        currency="EUR",
        period="MONTHLY",
        per_recipient=False,
        exempts=["DUTY"],
        over_threshold_status="WARNING",
        pass_documents=["IOSS_NUMBER"],
        description="VAT collected at sale for consignments up to EUR 150; no import duty",
    ),
    "UK_LOW_VALUE": RegimePolicy(
        regime="UK_LOW_VALUE",
        name="UK low value consignment relief",
        countries=["GB"],
        threshold=135,
        currency="GBP",
        period="QUARTERLY",
        per_recipient=False,
        exempts=["DUTY"],
        over_threshold_status="WARNING",
        pass_documents=["UK_VAT_REGISTRATION"],
        description="VAT charged at point of sale for consignments up to GBP 135; no customs duty",
    ),
}

# direct quotes; other pairs go through USD
FX_RATES: dict[tuple[str, str], float] = {
    ("USD", "EUR"): 0.85,
    ("USD", "GBP"): 0.73,
    ("USD", "CNY"): 7.2,
    ("EUR", "USD"): 1.18,
    ("EUR", "GBP"): 0.86,
    ("EUR", "CNY"): 8.5,
    ("GBP", "USD"): 1.37,
    ("GBP", "EUR"): 1.16,
    ("GBP", "CNY"): 9.9,
    ("CNY", "USD"): 0.14,
    ("CNY", "EUR"): 0.12,
    ("CNY", "GBP"): 0.10,
}
USD_PER_UNIT = {"USD": 1.0, "EUR": 1.18, "GBP": 1.37, "CNY": 0.14, "CAD": 0.73, "AUD": 0.66, "JPY": 0.0067}


class UnsupportedCurrencyError(ValueError):
    pass


def exchange_rate(from_currency: str, to_currency: str) -> float:
    src, dst = from_currency.upper(), to_currency.upper()
    if src == dst:
        return 1.0
    direct = FX_RATES.get((src, dst))
    if direct is not None:
        return direct
    if src not in USD_PER_UNIT or dst not in USD_PER_UNIT:
        raise UnsupportedCurrencyError(f"No exchange rate for {src}->{dst}")
    return USD_PER_UNIT[src] / USD_PER_UNIT[dst]


class RatePolicySource:
    """Serves country rate tables and regime policies through a TTL cache."""

    def __init__(self, ttl_seconds: float | None = None):
        self._tables = _build_tables()
        self._cache: TTLCache = TTLCache(
            settings.rate_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        )

    async def get_country_rates(self, country_code: str) -> CountryRates | None:
        code = (country_code or "").upper()
        key = f"country:{code}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        table = self._tables.get(code)
        if table is None:
            logger.info("No rate table for %s", code)
            return None
        self._cache.set(key, table)
        return table

    async def get_tax_rates(self, country_code: str, filters: RateFilters | None = None) -> list[TaxRate]:
        """Flat rate rows for a country, optionally narrowed by tax type, state or category."""
        filters = filters or RateFilters()
        key = f"rates:{country_code.upper()}:{canonical_json(filters)}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        table = await self.get_country_rates(country_code)
        if table is None:
            return []
        rows = [r for r in _flatten(table) if _matches(r, filters)]
        self._cache.set(key, rows)
        return rows

    async def get_compliance_policy(self, policy_type: str, country_code: str | None = None) -> RegimePolicy | None:
        policy = REGIME_POLICIES.get(policy_type.upper())
        if policy is None:
            return None
        if country_code and country_code.upper() not in policy.countries:
            return None
        return policy

    async def get_policies_for(self, country_code: str) -> list[RegimePolicy]:
        code = (country_code or "").upper()
        return [p for p in REGIME_POLICIES.values() if code in p.countries]

    async def convert_currency(self, amount: float, from_currency: str, to_currency: str) -> ConversionResult:
        rate = exchange_rate(from_currency, to_currency)
        return ConversionResult(
            converted_amount=round(amount * rate, 2),
            exchange_rate=rate,
            timestamp=datetime.now(timezone.utc),
        )

    async def force_update_rates(self, country_code: str | None = None) -> int:
        """Drop cached tables so the next read reloads them. Returns entries dropped."""
        if country_code is None:
            self._tables = _build_tables()
            return self._cache.clear()
        code = country_code.upper()
        fresh = _build_tables().get(code)
        if fresh is not None:
            self._tables[code] = fresh
        self._cache.delete(f"country:{code}")
        logger.info("Refreshed rate table for %s", code)
        return 1

    def clear_expired_cache(self) -> int:
        return self._cache.evict_expired()

    def get_cache_stats(self) -> dict:
        return {**self._cache.stats(), "countries": len(self._tables), "rate_version": RATE_VERSION}


def _flatten(table: CountryRates) -> list[TaxRate]:
    base = {"country_code": table.country_code, "source": table.source, "effective_date": table.effective_date}
    rows = [
        TaxRate(tax_type="VAT", rate=rate, category=cls, **base)
        for cls, rate in table.vat_rates.items()
    ]
    if table.duty_rate:
        rows.append(TaxRate(
            tax_type="DUTY",
            rate=table.duty_rate,
            threshold=table.duty_free_threshold,
            threshold_currency=table.currency if table.duty_free_threshold else None,
            **base,
        ))
    rows.extend(
        TaxRate(tax_type="CONSUMPTION_TAX", rate=rate, state_code=state, **base)
        for state, rate in sorted(table.consumption_tax.items())
    )
    return rows


def _matches(row: TaxRate, f: RateFilters) -> bool:
    if f.tax_type and row.tax_type != f.tax_type.upper():
        return False
    if f.state_code and row.state_code not in (None, f.state_code.upper()):
        return False
    if f.category and row.category not in (None, f.category):
        return False
    return True
