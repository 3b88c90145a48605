import json
from decimal import Decimal
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from schoolfin.core.exceptions import InvalidInputError


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    APP_NAME: str = Field("SchoolFin", description="Logger namespace and audit prefix")
    DB_URL: str = Field("sqlite:///./data/schoolfin.db", description="Database URL")
    AUDIT_LOG_PATH: str = Field("./data/logs", description="Directory for rotating logs and audit trail")
    LOG_LEVEL: str = "INFO"
    CURRENCY: str = "KES"

    # Weekly reminders go to guardians of students owing more than this
    FEE_REMINDER_THRESHOLD: Decimal = Decimal("1000")

    # PAYE (annual bands, applied to monthly pay x 12)
    PAYE_BANDS: List[Tuple[Optional[Decimal], Decimal]] = [
        (Decimal("288000"), Decimal("0.10")),
        (Decimal("388000"), Decimal("0.25")),
        (None, Decimal("0.30")),
    ]
    PERSONAL_RELIEF_MONTHLY: Decimal = Decimal("2400")

    # NSSF employee contribution, capped at the pensionable ceiling
    NSSF_EMPLOYEE_RATE: Decimal = Decimal("0.06")
    NSSF_PENSIONABLE_CEILING: Decimal = Decimal("18000")

    # Flat levies on gross pay
    SHA_RATE: Decimal = Decimal("0.0275")
    HOUSING_LEVY_RATE: Decimal = Decimal("0.015")


class TaxBand(BaseModel):
    """One PAYE bracket. ``upper_bound=None`` marks the unbounded top bracket."""

    model_config = ConfigDict(frozen=True)

    upper_bound: Optional[Decimal] = Field(None, gt=0)
    rate: Decimal = Field(..., ge=0, le=1)


class StatutoryConfig(BaseModel):
    """Jurisdiction parameters for the statutory deduction calculator."""

    model_config = ConfigDict(frozen=True)

    bands: Tuple[TaxBand, ...]
    personal_relief: Decimal = Field(Decimal("0"), ge=0)
    pension_rate: Decimal = Field(Decimal("0"), ge=0, le=1)
    pension_ceiling: Decimal = Field(Decimal("0"), ge=0)
    health_levy_rate: Decimal = Field(Decimal("0"), ge=0, le=1)
    housing_levy_rate: Decimal = Field(Decimal("0"), ge=0, le=1)

    paye_label: str = "PAYE"
    pension_label: str = "NSSF"
    health_levy_label: str = "SHA Contribution"
    housing_levy_label: str = "Housing Levy"

    @field_validator("bands", mode="before")
    @classmethod
    def coerce_pairs(cls, value):
        # accept [(upper, rate), ...] as written in settings and JSON files
        coerced = []
        for band in value or ():
            if isinstance(band, (list, tuple)):
                band = {"upper_bound": band[0], "rate": band[1]}
            coerced.append(band)
        return tuple(coerced)

    @field_validator("bands")
    @classmethod
    def check_bands(cls, bands: Tuple[TaxBand, ...]) -> Tuple[TaxBand, ...]:
        if not bands:
            raise ValueError("at least one tax band is required")
        if bands[-1].upper_bound is not None:
            raise ValueError("the last tax band must be unbounded")
        previous = Decimal("0")
        for band in bands[:-1]:
            if band.upper_bound is None:
                raise ValueError("only the last tax band may be unbounded")
            if band.upper_bound <= previous:
                raise ValueError("tax band upper bounds must be strictly increasing")
            previous = band.upper_bound
        return bands

    @property
    def deduction_labels(self) -> Tuple[str, str, str, str]:
        return (self.paye_label, self.pension_label, self.health_levy_label, self.housing_levy_label)


settings = Settings()


def statutory_config(source: Optional[Settings] = None) -> StatutoryConfig:
    """Build the statutory configuration from application settings."""
    s = source or settings
    try:
        return StatutoryConfig(
            bands=s.PAYE_BANDS,
            personal_relief=s.PERSONAL_RELIEF_MONTHLY,
            pension_rate=s.NSSF_EMPLOYEE_RATE,
            pension_ceiling=s.NSSF_PENSIONABLE_CEILING,
            health_levy_rate=s.SHA_RATE,
            housing_levy_rate=s.HOUSING_LEVY_RATE,
        )
    except ValidationError as e:
        raise InvalidInputError(f"Invalid statutory settings: {e}") from e


def load_statutory_config(path: Union[str, Path]) -> StatutoryConfig:
    """Load statutory configuration from a JSON file.

    The file holds the ``StatutoryConfig`` fields, e.g.::

        {"bands": [[288000, 0.1], [388000, 0.25], [null, 0.3]],
         "personal_relief": 2400, "pension_rate": 0.06, "pension_ceiling": 18000,
         "health_levy_rate": 0.0275, "housing_levy_rate": 0.015}
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Statutory config not found: {p}")
    with open(p, "r", encoding="utf-8") as f:
        raw = json.load(f, parse_float=Decimal)
    try:
        return StatutoryConfig.model_validate(raw)
    except ValidationError as e:
        raise InvalidInputError(f"Invalid statutory config in {p}: {e}") from e
