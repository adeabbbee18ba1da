"""Configuration management for the statement pipeline."""

import json
import os
import threading
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from ..models.core import PipelineConfig
from .rule_tables import BankRuleTable, MerchantTables, build_bank_rules, build_merchant_tables


logger = logging.getLogger(__name__)


DATA_DIRECTORY = Path(__file__).resolve().parent.parent / "data"
DEFAULT_BANK_RULES = DATA_DIRECTORY / "banks.yaml"
DEFAULT_MERCHANT_TABLES = DATA_DIRECTORY / "merchants.yaml"

AGGREGATOR_POLICIES = ("rent_band", "online")


class ConfigManager:
    """Manages loading and validation of pipeline configuration and rule tables"""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to configuration file. If None, searches for default locations.
        """
        self.config_path = config_path
        self._config_cache: Optional[PipelineConfig] = None
        self._bank_rules: Optional[BankRuleTable] = None
        self._merchant_tables: Optional[MerchantTables] = None
        self._lock = threading.Lock()

    def load_config(self, force_reload: bool = False) -> PipelineConfig:
        """Load pipeline configuration from file or return default

        Args:
            force_reload: Force reload from file even if cached

        Returns:
            PipelineConfig instance with loaded or default configuration
        """
        if self._config_cache is not None and not force_reload:
            return self._config_cache

        config_data = self._load_config_file()
        defaults = PipelineConfig()

        self._config_cache = PipelineConfig(
            max_parse_retries=config_data.get('max_parse_retries', defaults.max_parse_retries),
            model_timeout=float(config_data.get('model_timeout', defaults.model_timeout)),
            model_name=config_data.get('model_name', defaults.model_name),
            confidence_threshold=float(config_data.get('confidence_threshold', defaults.confidence_threshold)),
            max_workers=config_data.get('max_workers', defaults.max_workers),
            scratch_directory=config_data.get('scratch_directory'),
            output_directory=config_data.get('output_directory', defaults.output_directory),
            log_directory=config_data.get('log_directory', defaults.log_directory),
            aggregator_policy=config_data.get('aggregator_policy', defaults.aggregator_policy),
            bank_rules_path=config_data.get('bank_rules_path'),
            merchant_tables_path=config_data.get('merchant_tables_path'),
            default_max_attempts=config_data.get('default_max_attempts', defaults.default_max_attempts),
        )

        logger.info(f"Configuration loaded successfully from {self.config_path or 'defaults'}")
        return self._config_cache

    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration from file

        Returns:
            Dictionary with configuration data or empty dict if no file found

        Raises:
            ValueError: If the file exists but its contents are invalid
        """
        config_file = self._find_config_file()

        if not config_file or not os.path.exists(config_file):
            logger.info("No configuration file found, using defaults")
            return {}

        data = self._read_structured_file(config_file)
        if data is None:
            return {}

        self._validate_config_data(data)
        logger.info(f"Configuration loaded from {config_file}")
        return data

    @staticmethod
    def _read_structured_file(path: str) -> Any:
        with open(path, 'r', encoding='utf-8') as f:
            if str(path).endswith('.json'):
                return json.load(f)
            if str(path).endswith(('.yml', '.yaml')):
                return yaml.safe_load(f)
        raise ValueError(f"Unsupported config file format: {path}")

    def _find_config_file(self) -> Optional[str]:
        """Find configuration file in standard locations

        Returns:
            Path to configuration file or None if not found
        """
        if self.config_path:
            return self.config_path

        search_paths = [
            'statements_config.json',
            'statements_config.yml',
            'statements_config.yaml',
            'config/statements_config.json',
            'config/statements_config.yml',
            'config/statements_config.yaml',
            os.path.expanduser('~/.card_statements/config.json'),
            os.path.expanduser('~/.card_statements/config.yml'),
        ]

        for path in search_paths:
            if os.path.exists(path):
                return path

        return None

    def _validate_config_data(self, data: Dict[str, Any]) -> None:
        """Validate configuration data structure

        Args:
            data: Configuration data to validate

        Raises:
            ValueError: If configuration data is invalid
        """
        if not isinstance(data, dict):
            raise ValueError("Configuration must be a dictionary")

        for int_key in ['max_parse_retries', 'max_workers', 'default_max_attempts']:
            if data.get(int_key) is not None:
                value = data[int_key]
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ValueError(f"{int_key} must be an integer")
                if value < 0 or (int_key != 'max_parse_retries' and value == 0):
                    raise ValueError(f"{int_key} is out of range: {value}")

        for num_key in ['model_timeout', 'confidence_threshold']:
            if num_key in data:
                value = data[num_key]
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ValueError(f"{num_key} must be a number")
        if data.get('model_timeout', 1) <= 0:
            raise ValueError("model_timeout must be positive")
        if not 0 <= data.get('confidence_threshold', 0) <= 100:
            raise ValueError("confidence_threshold must be between 0 and 100")

        for dir_key in ['output_directory', 'log_directory', 'scratch_directory',
                        'bank_rules_path', 'merchant_tables_path', 'model_name']:
            if dir_key in data and data[dir_key] is not None:
                if not isinstance(data[dir_key], str):
                    raise ValueError(f"{dir_key} must be a string")
                if not data[dir_key].strip():
                    raise ValueError(f"{dir_key} cannot be empty")

        if 'aggregator_policy' in data and data['aggregator_policy'] not in AGGREGATOR_POLICIES:
            raise ValueError(
                f"aggregator_policy must be one of {', '.join(AGGREGATOR_POLICIES)}"
            )

    def load_bank_rules(self) -> BankRuleTable:
        """Load the bank password-convention table once and return the frozen copy"""
        with self._lock:
            if self._bank_rules is None:
                config = self.load_config()
                path = config.bank_rules_path or str(DEFAULT_BANK_RULES)
                self._bank_rules = build_bank_rules(
                    self._read_structured_file(path),
                    default_max_attempts=config.default_max_attempts,
                )
                logger.info(f"Loaded {len(self._bank_rules.rules)} bank rule(s) "
                            f"(version {self._bank_rules.version}) from {path}")
            return self._bank_rules

    def load_merchant_tables(self) -> MerchantTables:
        """Load the merchant keyword tables once and return the frozen copy"""
        with self._lock:
            if self._merchant_tables is None:
                config = self.load_config()
                path = config.merchant_tables_path or str(DEFAULT_MERCHANT_TABLES)
                self._merchant_tables = build_merchant_tables(self._read_structured_file(path))
                logger.info(f"Loaded merchant tables (version {self._merchant_tables.version}) from {path}")
            return self._merchant_tables

    def save_config_template(self, output_path: str) -> None:
        """Generate and save a configuration file template

        Args:
            output_path: Path where to save the template
        """
        defaults = PipelineConfig()
        template = {
            "max_parse_retries": defaults.max_parse_retries,
            "model_timeout": defaults.model_timeout,
            "model_name": defaults.model_name,
            "confidence_threshold": defaults.confidence_threshold,
            "max_workers": defaults.max_workers,
            "output_directory": defaults.output_directory,
            "log_directory": defaults.log_directory,
            "aggregator_policy": defaults.aggregator_policy,
            "default_max_attempts": defaults.default_max_attempts,
            "bank_rules_path": str(DEFAULT_BANK_RULES),
            "merchant_tables_path": str(DEFAULT_MERCHANT_TABLES),
        }

        try:
            output_dir = os.path.dirname(output_path)
            if output_dir:
                os.makedirs(output_dir, exist_ok=True)

            with open(output_path, 'w', encoding='utf-8') as f:
                if output_path.endswith(('.yml', '.yaml')):
                    yaml.dump(template, f, default_flow_style=False, indent=2)
                else:
                    json.dump(template, f, indent=2)

            logger.info(f"Configuration template saved to {output_path}")

        except Exception as e:
            logger.error(f"Error saving configuration template: {e}")
            raise

    def reset_config(self) -> None:
        """Reset caches, forcing reload on next access"""
        with self._lock:
            self._config_cache = None
            self._bank_rules = None
            self._merchant_tables = None
        logger.debug("Configuration cache reset")


def get_default_config_manager() -> ConfigManager:
    """Get a default configuration manager instance"""
    return ConfigManager()
