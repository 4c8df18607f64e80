"""
Configuration management for the entity memory store, embeddings and MCP settings.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

MEMORY_VARIANTS = ('graph', 'flat')


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class StoreConfig:
    """Configuration for the embedded SQLite store."""
    db_path: str
    busy_timeout_ms: int
    retry_attempts: int
    retry_delay: float


@dataclass
class BedrockEmbedConfig:
    """Configuration for Amazon Bedrock Embed service."""
    enabled: bool
    region: str
    model_id: str
    dimension: int
    retry_attempts: int
    retry_delay: float
    timeout_seconds: float


@dataclass
class MemoryConfig:
    """Configuration for memory behaviour shared by both facades."""
    variant: str
    flat_entity_name: str
    flat_entity_type: str
    default_search_limit: int
    tool_search_limit: int
    context_memory_limit: int


@dataclass
class MCPConfig:
    """Configuration for MCP interface."""
    transport: str
    host: str
    port: int


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: str
    log_level: str
    store: StoreConfig
    bedrock_embed: BedrockEmbedConfig
    memory: MemoryConfig
    mcp: MCPConfig


def load_config() -> AppConfig:
    """Load configuration from environment variables with defaults."""
    environment = os.getenv('ENVIRONMENT', 'development')

    # SQLite store configuration
    store_config = StoreConfig(db_path=os.getenv('DATABASE_PATH', './data/entitymem.db'),
                               busy_timeout_ms=int(os.getenv('DATABASE_BUSY_TIMEOUT_MS', '5000')),
                               retry_attempts=int(os.getenv('DATABASE_RETRY_ATTEMPTS', '3')),
                               retry_delay=float(os.getenv('DATABASE_RETRY_DELAY', '0.1')))

    # Bedrock Embed configuration
    bedrock_embed_config = BedrockEmbedConfig(enabled=_env_bool('EMBEDDINGS_ENABLED', 'true'),
                                              region=os.getenv('BEDROCK_EMBED_AWS_REGION', 'us-east-1'),
                                              model_id=os.getenv('BEDROCK_EMBED_MODEL_ID', 'amazon.titan-embed-text-v2:0'),
                                              dimension=int(os.getenv('BEDROCK_EMBED_DIMENSION', '1024')),
                                              retry_attempts=int(os.getenv('BEDROCK_EMBED_RETRY_ATTEMPTS', '2')),
                                              retry_delay=float(os.getenv('BEDROCK_EMBED_RETRY_DELAY', '0.5')),
                                              timeout_seconds=float(os.getenv('BEDROCK_EMBED_TIMEOUT_SECONDS', '5.0')))

    # Memory configuration
    variant = os.getenv('MEMORY_VARIANT', 'graph').strip().lower()
    if variant not in MEMORY_VARIANTS:
        raise ValueError(f'MEMORY_VARIANT must be one of {MEMORY_VARIANTS}, got {variant!r}')

    memory_config = MemoryConfig(variant=variant,
                                 flat_entity_name=os.getenv('FLAT_MEMORY_ENTITY_NAME', 'User Preferences'),
                                 flat_entity_type=os.getenv('FLAT_MEMORY_ENTITY_TYPE', 'concept'),
                                 default_search_limit=int(os.getenv('MEMORY_SEARCH_LIMIT', '10')),
                                 tool_search_limit=int(os.getenv('MEMORY_TOOL_SEARCH_LIMIT', '5')),
                                 context_memory_limit=int(os.getenv('MEMORY_CONTEXT_LIMIT', '3')))

    # MCP configuration
    mcp_config = MCPConfig(transport=os.getenv('MCP_TRANSPORT', 'sse'),
                           host=os.getenv('MCP_HOST', '127.0.0.1'),
                           port=int(os.getenv('MCP_PORT', '8000')))

    return AppConfig(environment=environment,
                     log_level=os.getenv('LOG_LEVEL', 'INFO'),
                     store=store_config,
                     bedrock_embed=bedrock_embed_config,
                     memory=memory_config,
                     mcp=mcp_config)


# Global configuration instance
config = load_config()
