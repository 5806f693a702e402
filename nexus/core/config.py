"""
Configuration management for Nexus Prime.
Handles loading and validation of application settings.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

class AIConfig(BaseModel):
    """Remote language-model configuration."""
    backend: str = "openai"  # openai, anthropic, gemini, ollama
    default_model: str = "gpt-4o"
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    local_api_url: str = "http://localhost:11434"
    temperature: float = 0.7
    max_tokens: int = 1000
    # Wall-clock limit per model call; None waits indefinitely
    request_timeout: Optional[float] = 60.0
    max_input_chars: int = 1000

class VoiceConfig(BaseModel):
    """Voice synthesis configuration."""
    enabled: bool = True
    tts_rate: int = 200
    tts_volume: float = 0.9
    level_interval: float = 0.1

class DiscordConfig(BaseModel):
    """Outbound Discord bridge configuration."""
    enabled: bool = False
    bot_token: Optional[str] = None
    channel_id: Optional[str] = None
    webhook_url: Optional[str] = None
    default_username: str = "Nexus Prime"
    request_timeout: float = 10.0

class InternetConfig(BaseModel):
    """Internet lookups used to enrich prompts."""
    enabled: bool = True
    auto_search: bool = False
    max_results: int = 3
    request_timeout: float = 8.0
    search_url: str = "https://en.wikipedia.org/w/api.php"
    weather_url: str = "https://wttr.in"

class ImageConfig(BaseModel):
    """Image generation configuration."""
    enabled: bool = True
    model: str = "dall-e-3"
    size: str = "1024x1024"

class GroupChatConfig(BaseModel):
    """Group session behaviour."""
    context_messages: int = 10
    autonomous_interval: float = 8.0

class StorageConfig(BaseModel):
    """Conversation log persistence."""
    persist_history: bool = True
    history_file: str = "chat_history.json"
    agents_file: str = "data/agents.yaml"

class Config(BaseModel):
    """Main application configuration."""
    app_name: str = "Nexus Prime"
    version: str = "1.0.0"
    debug: bool = False
    data_dir: Path = Path("data")
    log_dir: str = "logs"
    log_level: str = "INFO"

    # Component configurations
    ai: AIConfig = Field(default_factory=AIConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    internet: InternetConfig = Field(default_factory=InternetConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    group_chat: GroupChatConfig = Field(default_factory=GroupChatConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @property
    def history_path(self) -> Path:
        return Path(self.data_dir) / self.storage.history_file

# Environment variable -> (section, field); section None means top level
ENV_OVERRIDES = {
    'OPENAI_API_KEY': ('ai', 'openai_api_key'),
    'ANTHROPIC_API_KEY': ('ai', 'anthropic_api_key'),
    'GEMINI_API_KEY': ('ai', 'gemini_api_key'),
    'NEXUS_AI_BACKEND': ('ai', 'backend'),
    'NEXUS_MODEL': ('ai', 'default_model'),
    'OLLAMA_URL': ('ai', 'local_api_url'),
    'DISCORD_BOT_TOKEN': ('discord', 'bot_token'),
    'DISCORD_CHANNEL_ID': ('discord', 'channel_id'),
    'DISCORD_WEBHOOK_URL': ('discord', 'webhook_url'),
    'NEXUS_LOG_LEVEL': (None, 'log_level'),
    'NEXUS_DATA_DIR': (None, 'data_dir'),
}

def deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            base[key] = deep_merge(base[key], value)
        else:
            base[key] = value
    return base

def load_config(config_file: Optional[str] = None) -> Config:
    """Load configuration from file or environment variables."""

    # Default config file path
    if config_file is None:
        config_file = "configs/config.yaml"

    config_path = Path(config_file)

    # Load from YAML if exists
    config_data: Dict[str, Any] = {}
    if config_path.exists() and config_path.suffix in ['.yaml', '.yml']:
        import yaml
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f) or {}

    # Override with environment variables
    env_overrides: Dict[str, Any] = {}
    for env_name, (section, field_name) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if not value:
            continue
        if section is None:
            env_overrides[field_name] = value
        else:
            env_overrides.setdefault(section, {})[field_name] = value

    # Discord forwarding is switched on by providing credentials
    discord_env = env_overrides.get('discord', {})
    if discord_env.get('webhook_url') or (discord_env.get('bot_token') and discord_env.get('channel_id')):
        discord_env.setdefault('enabled', True)

    final_config = deep_merge(config_data, env_overrides)

    return Config(**final_config)

def save_config(config: Config, config_file: str = "configs/config.yaml"):
    """Save configuration to YAML file."""
    import yaml

    config_path = Path(config_file)
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(mode='json')

    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump(config_dict, f, default_flow_style=False, indent=2)
