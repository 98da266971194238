"""
Settings Store
==============

Caricamento della configurazione con fallback ai default.

Priorità di caricamento:
1. Path esplicito passato al costruttore
2. Variabile d'ambiente HYBRIDRAG_CONFIG
3. ``defaults.yaml`` incluso nel package
4. Default dei modelli Pydantic (se nessun file è leggibile)

Gli override runtime vengono validati da Pydantic prima di essere applicati,
quindi un valore fuori range non entra mai nella configurazione attiva.

Esempio:
    >>> store = SettingsStore()
    >>> settings = store.get_settings()
    >>> settings.fusion.alpha
    0.5
    >>> store.apply_override("fusion", "alpha", 0.8)
    >>> store.get_settings().fusion.alpha
    0.8
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import structlog
import yaml
from pydantic import ValidationError

from hybridrag.config.settings import RetrievalSettings
from hybridrag.exceptions import InvalidParameter

log = structlog.get_logger()

CONFIG_ENV_VAR = "HYBRIDRAG_CONFIG"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


class SettingsStore:
    """
    Sorgente unica delle impostazioni di retrieval.

    Non è un singleton: ogni engine può avere il proprio store, utile per
    test deterministici e per indici multipli nello stesso processo.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """
        Inizializza lo store.

        Args:
            config_path: Path al file YAML. Se None usa HYBRIDRAG_CONFIG o i default.
        """
        env_path = os.environ.get(CONFIG_ENV_VAR)
        self.config_path = Path(config_path or env_path or DEFAULT_CONFIG_PATH)
        self._yaml_config: Optional[Dict[str, Any]] = None
        self._overrides: Dict[str, Dict[str, Any]] = {}
        self._cache: Optional[RetrievalSettings] = None

        log.debug("SettingsStore initialized", config_path=str(self.config_path))

    def _load_yaml_config(self) -> Dict[str, Any]:
        """Carica il file YAML, restituisce {} se mancante o illeggibile."""
        if self._yaml_config is not None:
            return self._yaml_config

        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            log.warning("Config file not found, using defaults", path=str(self.config_path))
            data = {}
        except yaml.YAMLError as e:
            log.error("Invalid YAML config, using defaults", path=str(self.config_path), error=str(e))
            data = {}

        if not isinstance(data, dict):
            log.error("Config root must be a mapping, using defaults", path=str(self.config_path))
            data = {}

        self._yaml_config = data
        return data

    def _merged(self) -> Dict[str, Any]:
        """YAML + override runtime, sezione per sezione."""
        merged: Dict[str, Any] = {}
        for key, value in self._load_yaml_config().items():
            merged[key] = dict(value) if isinstance(value, dict) else value
        for section, values in self._overrides.items():
            current = merged.get(section)
            if isinstance(current, dict):
                current.update(values)
            else:
                merged[section] = dict(values)
        return merged

    def get_settings(self) -> RetrievalSettings:
        """
        Restituisce le impostazioni attive.

        Raises:
            pydantic.ValidationError: se il file YAML contiene valori non validi
        """
        if self._cache is None:
            self._cache = RetrievalSettings.model_validate(self._merged())
            log.debug("Settings loaded", path=str(self.config_path), overrides=list(self._overrides))
        return self._cache

    def apply_override(self, section: str, key: str, value: Any) -> RetrievalSettings:
        """
        Applica un override runtime (senza riavvio).

        Args:
            section: Sezione (es. "fusion", "hnsw")
            key: Chiave nella sezione (es. "alpha")
            value: Nuovo valore

        Returns:
            Le impostazioni aggiornate

        Raises:
            InvalidParameter: se il valore non supera la validazione
        """
        if section not in RetrievalSettings.model_fields:
            raise InvalidParameter("section", section, "unknown settings section")

        candidate = dict(self._overrides.get(section, {}))
        candidate[key] = value
        previous = self._overrides.get(section)
        self._overrides[section] = candidate
        try:
            settings = RetrievalSettings.model_validate(self._merged())
        except ValidationError as e:
            if previous is None:
                del self._overrides[section]
            else:
                self._overrides[section] = previous
            raise InvalidParameter(f"{section}.{key}", value, str(e.errors()[0]["msg"])) from e

        self._cache = settings
        log.info("Settings override applied", section=section, key=key, value=value)
        return settings

    def reset_overrides(self) -> None:
        """Rimuove tutti gli override runtime."""
        self._overrides.clear()
        self._cache = None


def load_settings(config_path: Optional[Union[str, Path]] = None) -> RetrievalSettings:
    """Shortcut: carica le impostazioni da ``config_path`` (o dai default)."""
    return SettingsStore(config_path).get_settings()
