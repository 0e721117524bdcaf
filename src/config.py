"""
Serpo Structure - Конфигурация приложения

Загрузка настроек из переменных окружения с валидацией через Pydantic.
"""

from functools import lru_cache
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Основные настройки приложения."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Binance
    binance_base_url: str = Field(
        default="https://api.binance.com",
        description="Базовый URL Binance Spot API",
    )
    binance_weight_limit: int = Field(
        default=6000,
        description="Лимит веса запросов Binance за окно (X-MBX-USED-WEIGHT-1M)",
    )
    binance_weight_window: float = Field(
        default=60.0,
        description="Окно лимита веса Binance (секунды)",
    )
    request_timeout: float = Field(
        default=10.0,
        description="Таймаут HTTP запроса (секунды)",
    )

    # Настройки приложения
    log_level: str = Field(
        default="INFO",
        description="Уровень логирования",
    )

    # Кэш анализа (секунды)
    sr_cache_ttl: int = Field(
        default=300,
        description="TTL кэша support/resistance",
    )
    rsi_cache_ttl: int = Field(
        default=180,
        description="TTL кэша RSI heatmap",
    )
    divergence_cache_ttl: int = Field(
        default=300,
        description="TTL кэша сканера дивергенций",
    )
    ma_cross_cache_ttl: int = Field(
        default=300,
        description="TTL кэша пересечений MA",
    )

    # RSI
    rsi_period: int = Field(
        default=14,
        description="Период RSI",
    )

    # Support / Resistance
    sr_timeframes: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["15m", "1h", "4h", "1d", "1w", "1M"],
        description="Таймфреймы для поиска уровней",
    )
    sr_candle_limit: int = Field(
        default=200,
        description="Количество свечей на таймфрейм",
    )
    sr_pivot_window: int = Field(
        default=10,
        description="Окно поиска свинг-точек (баров с каждой стороны)",
    )
    level_cluster_tolerance: float = Field(
        default=0.003,
        description="Относительный допуск кластеризации уровней (0.003 = 0.3%)",
    )
    active_band_pct: float = Field(
        default=0.15,
        description="Активная зона вокруг цены (0.15 = ±15%)",
    )

    # Дивергенции
    divergence_candle_limit: int = Field(
        default=200,
        description="Количество свечей для сканера дивергенций",
    )
    divergence_pivot_window: int = Field(
        default=5,
        description="Окно пивотов для дивергенций",
    )
    divergence_min_rsi_delta: float = Field(
        default=6.0,
        description="Минимальная разница RSI между пивотами",
    )
    divergence_min_price_delta_crypto: float = Field(
        default=0.8,
        description="Минимальное изменение цены (%) для crypto/stock",
    )
    divergence_min_price_delta_forex: float = Field(
        default=0.25,
        description="Минимальное изменение цены (%) для forex",
    )
    divergence_min_bars_apart: int = Field(
        default=10,
        description="Минимальное расстояние между пивотами (бары)",
    )
    divergence_max_age_bars: int = Field(
        default=80,
        description="Максимальный возраст последнего пивота (бары)",
    )
    divergence_match_tolerance: int = Field(
        default=10,
        description="Окно сопоставления пивотов цены и RSI (бары)",
    )

    @field_validator("sr_timeframes", mode="before")
    @classmethod
    def parse_timeframes(cls, v):
        """Парсинг списка таймфреймов из строки "15m,1h,4h"."""
        if isinstance(v, str):
            return [x.strip() for x in v.split(",") if x.strip()]
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Получение настроек приложения.

    Кэшируется для повторного использования.
    """
    return Settings()


# Экспортируем настройки для удобства импорта
settings = get_settings()
