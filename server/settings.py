from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CONQUEST_")

    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    max_players: int = 6

    # pacing between AI sub-steps, in seconds
    ai_step_delay: float = 0.3
    ai_attack_delay: float = 0.8
    ai_battle_delay: float = 1.0
    ai_turn_gap: float = 0.5

    # unreported tactical battles are simulated by the server after this long
    battle_timeout: float = 65.0

    pact_break_desertion_rate: float = 0.07


SETTINGS = ServerSettings()
