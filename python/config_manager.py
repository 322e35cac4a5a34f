"""
Configuration Management Module
Loads and validates conflict-check configuration from config.yaml
"""

import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


@dataclass
class SimilarityThresholds:
    """Token similarity thresholds (0-1) for the three matching tiers"""
    high: float = 0.95
    medium: float = 0.85
    low: float = 0.75


@dataclass
class MatchingConfig:
    """Entity matching parameters"""
    enable_transliteration: bool = True
    similarity_thresholds: SimilarityThresholds = field(default_factory=SimilarityThresholds)
    min_string_length_for_similarity: int = 10
    strip_legal_forms: bool = True


@dataclass
class RulesConfig:
    """Which conflict rules run"""
    check_related_entities: bool = True


@dataclass
class CacheConfig:
    """Result cache and lawyer lookup cache settings"""
    enabled: bool = True
    ttl_seconds: float = 300.0
    max_size: int = 1000
    eviction_fraction: float = 0.1
    lawyer_ttl_seconds: float = 600.0
    sweep_interval_seconds: float = 60.0


@dataclass
class PerformanceConfig:
    """Performance configuration"""
    max_cases_to_check: int = 10000


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    detailed: bool = True


@dataclass
class AlgorithmConfig:
    """Algorithm version information"""
    version: str = "1.0.0"
    name: str = "Transliterating Conflict Matcher"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.matching: MatchingConfig = MatchingConfig()
        self.rules: RulesConfig = RulesConfig()
        self.cache: CacheConfig = CacheConfig()
        self.performance: PerformanceConfig = PerformanceConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.algorithm: AlgorithmConfig = AlgorithmConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'ConfigManager':
        """Build a configuration from an already-parsed mapping (no file lookup)"""
        config = cls.__new__(cls)
        config.config_path = None
        config._raw_config = dict(raw or {})
        config.matching = MatchingConfig()
        config.rules = RulesConfig()
        config.cache = CacheConfig()
        config.performance = PerformanceConfig()
        config.logging = LoggingConfig()
        config.algorithm = AlgorithmConfig()
        config._parse_all()
        return config

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_all()

    def _parse_all(self) -> None:
        self._parse_matching()
        self._parse_rules()
        self._parse_cache()
        self._parse_performance()
        self._parse_logging()
        self._parse_algorithm()
        self._validate()

    def _parse_matching(self) -> None:
        """Parse matching configuration"""
        cfg = self._raw_config.get('matching', {}) or {}

        thresholds_cfg = cfg.get('similarity_thresholds', {}) or {}
        thresholds = SimilarityThresholds(
            high=float(thresholds_cfg.get('high', 0.95)),
            medium=float(thresholds_cfg.get('medium', 0.85)),
            low=float(thresholds_cfg.get('low', 0.75))
        )

        self.matching = MatchingConfig(
            enable_transliteration=cfg.get('enable_transliteration', True),
            similarity_thresholds=thresholds,
            min_string_length_for_similarity=cfg.get('min_string_length_for_similarity', 10),
            strip_legal_forms=cfg.get('strip_legal_forms', True)
        )

    def _parse_rules(self) -> None:
        """Parse conflict rule switches"""
        cfg = self._raw_config.get('rules', {}) or {}
        self.rules = RulesConfig(
            check_related_entities=cfg.get('check_related_entities', True)
        )

    def _parse_cache(self) -> None:
        """Parse cache configuration"""
        cfg = self._raw_config.get('cache', {}) or {}
        self.cache = CacheConfig(
            enabled=cfg.get('enabled', True),
            ttl_seconds=float(cfg.get('ttl_seconds', 300)),
            max_size=int(cfg.get('max_size', 1000)),
            eviction_fraction=float(cfg.get('eviction_fraction', 0.1)),
            lawyer_ttl_seconds=float(cfg.get('lawyer_ttl_seconds', 600)),
            sweep_interval_seconds=float(cfg.get('sweep_interval_seconds', 60))
        )

    def _parse_performance(self) -> None:
        """Parse performance configuration"""
        cfg = self._raw_config.get('performance', {}) or {}
        self.performance = PerformanceConfig(
            max_cases_to_check=int(cfg.get('max_cases_to_check', 10000))
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {}) or {}
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format),
            detailed=cfg.get('detailed', True)
        )

    def _parse_algorithm(self) -> None:
        """Parse algorithm configuration"""
        cfg = self._raw_config.get('algorithm', {}) or {}
        self.algorithm = AlgorithmConfig(
            version=str(cfg.get('version', '1.0.0')),
            name=cfg.get('name', 'Transliterating Conflict Matcher')
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary"""
        thresholds = self.matching.similarity_thresholds
        return {
            'matching': {
                'enable_transliteration': self.matching.enable_transliteration,
                'similarity_thresholds': {
                    'high': thresholds.high,
                    'medium': thresholds.medium,
                    'low': thresholds.low
                },
                'min_string_length_for_similarity': self.matching.min_string_length_for_similarity,
                'strip_legal_forms': self.matching.strip_legal_forms
            },
            'rules': {
                'check_related_entities': self.rules.check_related_entities
            },
            'cache': {
                'enabled': self.cache.enabled,
                'ttl_seconds': self.cache.ttl_seconds,
                'max_size': self.cache.max_size,
                'eviction_fraction': self.cache.eviction_fraction,
                'lawyer_ttl_seconds': self.cache.lawyer_ttl_seconds,
                'sweep_interval_seconds': self.cache.sweep_interval_seconds
            },
            'performance': {
                'max_cases_to_check': self.performance.max_cases_to_check
            },
            'algorithm': {
                'version': self.algorithm.version,
                'name': self.algorithm.name
            }
        }

    def _validate(self) -> None:
        """Validate configuration values"""
        t = self.matching.similarity_thresholds
        for tier, value in (('high', t.high), ('medium', t.medium), ('low', t.low)):
            if not 0 < value <= 1:
                raise ConfigurationError(
                    f"similarity_thresholds.{tier} must be in (0, 1], got {value}"
                )
        if not t.low <= t.medium <= t.high:
            raise ConfigurationError(
                "similarity_thresholds must satisfy low <= medium <= high "
                f"(got low={t.low}, medium={t.medium}, high={t.high})"
            )

        if self.matching.min_string_length_for_similarity < 1:
            raise ConfigurationError("min_string_length_for_similarity must be positive")

        cache = self.cache
        if cache.ttl_seconds <= 0 or cache.lawyer_ttl_seconds <= 0:
            raise ConfigurationError("Cache TTLs must be positive")
        if cache.max_size < 1:
            raise ConfigurationError("cache.max_size must be at least 1")
        if not 0 < cache.eviction_fraction <= 1:
            raise ConfigurationError("cache.eviction_fraction must be in (0, 1]")
        if cache.sweep_interval_seconds <= 0:
            raise ConfigurationError("cache.sweep_interval_seconds must be positive")

        if self.performance.max_cases_to_check < 1:
            raise ConfigurationError("performance.max_cases_to_check must be positive")

        if not isinstance(logging.getLevelName(str(self.logging.level).upper()), int):
            raise ConfigurationError(f"Unknown logging level: {self.logging.level}")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
