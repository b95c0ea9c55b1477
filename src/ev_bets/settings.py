"""Application settings for ev-bets."""

from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from ev_bets.runtime_config import (
    EngineConfig,
    as_csv_list,
    current_runtime_config,
    parse_methods,
)


class Settings(BaseSettings):
    """Environment-level overrides for the engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="EV_BETS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    sharp_book: str = "pinnacle"
    target_sportsbooks: str = "betano,unibet,betway"
    min_books_for_fair_odds: int = Field(default=3, ge=1)
    outlier_threshold: float = 3.5
    min_ev_percent: float = 5.0
    max_decimal_odds: float = Field(default=10.0, gt=1.0)
    sharp_overround: float = Field(default=1.025, gt=0.0)
    methods: str = "TRIMMED_MEAN_PROB,SHARP_BOOK_REFERENCE"
    track_all_bets: bool = False

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Process env beats values seeded from config/runtime.toml.
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def from_runtime(cls) -> "Settings":
        """Construct settings from runtime config; env vars still take precedence."""
        runtime = current_runtime_config()
        engine = runtime.engine
        return cls(
            sharp_book=engine.sharp_book_id,
            target_sportsbooks=",".join(engine.target_book_ids),
            min_books_for_fair_odds=engine.min_books_for_fair_odds,
            outlier_threshold=engine.outlier_threshold,
            min_ev_percent=engine.min_ev_percent,
            max_decimal_odds=engine.max_decimal_odds,
            sharp_overround=engine.sharp_overround,
            methods=",".join(method.value for method in engine.methods),
            track_all_bets=runtime.track_all_bets,
        )

    def engine_config(self) -> EngineConfig:
        """Materialize the explicit engine parameter object."""
        defaults = EngineConfig()
        return EngineConfig(
            sharp_book_id=self.sharp_book.strip() or defaults.sharp_book_id,
            target_book_ids=as_csv_list(
                self.target_sportsbooks, default=defaults.target_book_ids
            ),
            min_books_for_fair_odds=self.min_books_for_fair_odds,
            outlier_threshold=self.outlier_threshold,
            min_ev_percent=self.min_ev_percent,
            max_decimal_odds=self.max_decimal_odds,
            sharp_overround=self.sharp_overround,
            methods=parse_methods(
                as_csv_list(
                    self.methods,
                    default=tuple(method.value for method in defaults.methods),
                )
            ),
        )
