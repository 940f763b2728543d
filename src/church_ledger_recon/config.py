"""Configuration loader and validation for reconciliation settings."""

from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import logging

import pydantic
import yaml
from pydantic import BaseModel, Field

from .utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class TabularInputConfig(BaseModel):
    """Settings shared by the CSV and Excel input files."""

    encoding: str = "utf-8"
    delimiter: str = ","
    sheet_name: Optional[str] = None
    date_format: str = "%Y-%m-%d"
    column_mappings: dict[str, str] = Field(default_factory=dict)


class BankLedgerInputConfig(TabularInputConfig):
    """Configuration for bank ledger export parsing."""

    column_mappings: dict[str, str] = Field(
        default_factory=lambda: {
            "transaction_date": "거래일자",
            "time": "거래시간",
            "withdrawal": "출금금액",
            "deposit": "입금금액",
            "balance": "잔액",
            "description": "적요",
            "detail": "내용",
            "branch": "거래점",
            "memo": "메모",
        }
    )


class CashOfferingInputConfig(TabularInputConfig):
    """Configuration for the counted offering-box sheet."""

    default_code: int = 11
    default_item: str = "주일헌금"
    column_mappings: dict[str, str] = Field(
        default_factory=lambda: {
            "date": "날짜",
            "amount": "금액",
            "attribution": "성명",
            "code": "코드",
            "item": "항목",
            "note": "비고",
        }
    )


class InputConfig(BaseModel):
    """Configuration for input file parsing."""

    bank_ledger: BankLedgerInputConfig = Field(default_factory=BankLedgerInputConfig)
    cash_offerings: CashOfferingInputConfig = Field(default_factory=CashOfferingInputConfig)


class DefaultIncomeCode(BaseModel):
    """An offering code suggested for deposits that no rule explains."""

    code: int
    name: str


class MatchingSettings(BaseModel):
    """Thresholds for the auto-match classification."""

    auto_match_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    ambiguity_margin: float = Field(default=0.05, ge=0.0, le=1.0)
    max_candidates: int = Field(default=3, ge=1)
    small_offering_limit: Decimal = Decimal("50000")
    default_income_codes: dict[str, DefaultIncomeCode] = Field(
        default_factory=lambda: {
            "small": DefaultIncomeCode(code=11, name="주일헌금"),
            "tithe": DefaultIncomeCode(code=12, name="십일조"),
            "thanksgiving": DefaultIncomeCode(code=13, name="감사헌금"),
        }
    )


class SuppressionSettings(BaseModel):
    """Keywords marking bank lines accounted for by another channel."""

    cash_box_keywords: list[str] = Field(default_factory=lambda: ["헌금함", "현금입금"])
    card_payment_keywords: list[str] = Field(
        default_factory=lambda: ["nh카드", "신용카드", "체크카드", "카드결제", "카드대금"]
    )
    detect_duplicate_lines: bool = True


class LumpSumSettings(BaseModel):
    """Settings for matching an aggregate total to a single bank line."""

    tolerance: Decimal = Decimal("1000")
    materiality_threshold: Decimal = Decimal("0")
    search_window_days: int = 0
    indicator_keywords: list[str] = Field(default_factory=list)


class RuleLearningSettings(BaseModel):
    """Settings for rules learned from manual classifications."""

    enabled: bool = True
    initial_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    confidence_step: float = Field(default=0.05, ge=0.0, le=1.0)
    max_pattern_length: int = Field(default=15, ge=1)
    bank_names: list[str] = Field(
        default_factory=lambda: ["국민", "신한", "우리", "하나", "농협", "NH", "KB", "SC"]
    )
    channel_tokens: list[str] = Field(
        default_factory=lambda: ["G-", "S-", "E-", "PC", "폰", "NH콕송금", "오픈뱅킹"]
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


class ReconConfig(BaseModel):
    """Main configuration model for reconciliation."""

    input: InputConfig = Field(default_factory=InputConfig)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    suppression: SuppressionSettings = Field(default_factory=SuppressionSettings)
    cash_offering: LumpSumSettings = Field(
        default_factory=lambda: LumpSumSettings(
            tolerance=Decimal("1000"),
            materiality_threshold=Decimal("10000"),
            indicator_keywords=["헌금함", "헌금", "현금"],
        )
    )
    card_payment: LumpSumSettings = Field(
        default_factory=lambda: LumpSumSettings(
            tolerance=Decimal("1000"),
            search_window_days=30,
            indicator_keywords=["nh카드", "신용카드", "체크카드", "카드결제", "카드대금"],
        )
    )
    rule_learning: RuleLearningSettings = Field(default_factory=RuleLearningSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    config_file_path: Optional[str] = None


def get_default_config() -> dict[str, Any]:
    """Return the default configuration as a plain dictionary."""
    return ReconConfig().model_dump(mode="json", exclude={"config_file_path"})


def load_config(config_path: Optional[Path] = None) -> ReconConfig:
    """
    Load configuration from a YAML file or use defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        ReconConfig object with loaded or default settings

    Raises:
        ConfigurationError: If the file cannot be read or fails validation
    """
    config_dict = get_default_config()

    if config_path and config_path.exists():
        logger.info(f"Loading configuration from: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(user_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

        # Deep merge user config into defaults
        config_dict = _deep_merge(config_dict, user_config)
        config_dict["config_file_path"] = str(config_path)
    else:
        logger.info("Using default configuration")

    try:
        return ReconConfig(**config_dict)
    except pydantic.ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge on top

    Returns:
        Merged dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def generate_default_config(output_path: Path) -> None:
    """
    Generate a default configuration file.

    Args:
        output_path: Path to write the configuration file
    """
    config_dict = get_default_config()

    yaml_content = """# Church ledger reconciliation configuration
# Generated configuration file - customize as needed
#
# matching.auto_match_threshold: minimum rule confidence for auto-matching
# matching.ambiguity_margin: a runner-up this close to the top rule forces review
# cash_offering.tolerance: allowed difference between cash total and bank deposit

"""
    yaml_content += yaml.safe_dump(
        config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True
    )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        f.write(yaml_content)

    logger.info(f"Generated configuration file: {output_path}")
