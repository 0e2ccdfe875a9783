import tomllib
from functools import cache
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

_default_filepath: str = "config.template.toml"


@dataclass
class LogConfig:
    level: str = "INFO"
    # Empty means stderr only.
    file: str = ""

    @staticmethod
    def load(toml: dict[str, Any]) -> "LogConfig":
        level: str = toml["level"]
        file: str = toml.get("file", "")

        return LogConfig(level=level, file=file)


@dataclass
class RedisConfig:
    host: str = "127.0.0.1"
    port: int = 6379
    db: int = 0

    @staticmethod
    def load(toml: dict[str, Any]) -> "RedisConfig":
        host: str = toml["host"]
        port: int = int(toml["port"])
        db: int = int(toml["db"])

        return RedisConfig(host=host, port=port, db=db)


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///registry.db"

    @staticmethod
    def load(toml: dict[str, Any]) -> "DatabaseConfig":
        url: str = toml["url"]
        return DatabaseConfig(url=url)


class CardBackend(StrEnum):
    local = "local"
    redis = "redis"


@dataclass
class CardConfig:
    backend: CardBackend = CardBackend.local

    # Last issued number before any member exists, first allocation is start + 1.
    start: int = 100000
    counter_key: str = "registry::card::counter"
    recycle_key: str = "registry::card::recycled"

    @staticmethod
    def load(toml: dict[str, Any]) -> "CardConfig":
        return CardConfig(
            backend=CardBackend(toml["backend"]),
            start=int(toml["start"]),
            counter_key=toml["counter_key"],
            recycle_key=toml["recycle_key"],
        )


@dataclass
class GenealogyConfig:
    workers: int = 1
    drain_timeout: float = 5.0

    @staticmethod
    def load(toml: dict[str, Any]) -> "GenealogyConfig":
        return GenealogyConfig(
            workers=int(toml["workers"]),
            drain_timeout=float(toml["drain_timeout"]),
        )


@dataclass
class RegistryConfig:
    validate_phone_on_create: bool = False

    @staticmethod
    def load(toml: dict[str, Any]) -> "RegistryConfig":
        return RegistryConfig(
            validate_phone_on_create=bool(toml["validate_phone_on_create"])
        )


# Just read this config when needed.
@dataclass
class Config:
    log: LogConfig = field(default_factory=LogConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    card: CardConfig = field(default_factory=CardConfig)
    genealogy: GenealogyConfig = field(default_factory=GenealogyConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)

    @staticmethod
    def load(toml: dict[str, Any]) -> "Config":
        return Config(
            log=LogConfig.load(toml["log"]),
            database=DatabaseConfig.load(toml["database"]),
            redis=RedisConfig.load(toml["redis"]),
            card=CardConfig.load(toml["card"]),
            genealogy=GenealogyConfig.load(toml["genealogy"]),
            registry=RegistryConfig.load(toml["registry"]),
        )


@cache
def get_config(filepath: str | None = None) -> Config:
    if filepath is None:
        filepath = _default_filepath

    with open(filepath, "rb") as fp:
        toml = tomllib.load(fp)

    return Config.load(toml)


def set_config_file_path(path: str):
    global _default_filepath
    _default_filepath = path
    reload_config()


def reload_config() -> None:
    get_config.cache_clear()
