import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic_settings import BaseSettings

from ragstore.config.settings import Settings, settings

_MISSING = object()


class ConfigAdapter:
	"""Dotted-key access (``"store.db_path"``) over a Settings tree.

	Keys that have no matching settings field are kept in a flat
	``extras`` map so callers can stash ad-hoc values.
	"""

	def __init__(self, settings_obj: Settings):
		self._settings = settings_obj
		self._extras: Dict[str, Any] = {}

	def _parent_of(self, key: str) -> Tuple[Any, str]:
		"""Walk to the object holding the last key segment; (None, leaf) if the path breaks."""
		*path, leaf = key.split(".")
		node: Any = self._settings
		for part in path:
			if isinstance(node, BaseSettings) and part in type(node).model_fields:
				node = getattr(node, part)
			elif isinstance(node, dict) and part in node:
				node = node[part]
			else:
				return None, leaf
		return node, leaf

	def get(self, key: str, default=None):
		if key in self._extras:
			return self._extras[key]
		node, leaf = self._parent_of(key)
		if isinstance(node, BaseSettings):
			value = getattr(node, leaf, _MISSING) if leaf in type(node).model_fields else _MISSING
		elif isinstance(node, dict):
			value = node.get(leaf, _MISSING)
		else:
			value = _MISSING
		return default if value is _MISSING else value

	def set(self, key: str, value) -> None:
		node, leaf = self._parent_of(key)
		if isinstance(node, BaseSettings) and leaf in type(node).model_fields:
			setattr(node, leaf, value)
		elif isinstance(node, dict):
			node[leaf] = value
		else:
			self._extras[key] = value

	def update(self, data: Dict[str, Any], prefix: str = "") -> None:
		"""Apply a nested mapping, descending into settings groups."""
		for key, value in data.items():
			dotted = f"{prefix}{key}"
			if isinstance(value, dict) and isinstance(self.get(dotted), (BaseSettings, dict)):
				self.update(value, prefix=f"{dotted}.")
			else:
				self.set(dotted, value)

	@property
	def all(self) -> Dict[str, Any]:
		combined = json.loads(self._settings.model_dump_json())
		combined.update(self._extras)
		return combined


class Config(ConfigAdapter):
	"""Settings plus an optional JSON file whose values override them."""

	def __init__(self, config_path: Optional[str] = None, settings_obj: Optional[Settings] = None):
		super().__init__(settings_obj if settings_obj is not None else Settings())
		self.config_path = Path(config_path) if config_path else None
		self.reload_file()

	def reload_file(self) -> bool:
		"""Apply the override file. Returns False when it is absent or unreadable."""
		if self.config_path is None or not self.config_path.is_file():
			return False
		try:
			data = json.loads(self.config_path.read_text(encoding="utf-8"))
		except (OSError, json.JSONDecodeError):
			return False
		if not isinstance(data, dict):
			return False
		self.update(data)
		return True

	def save(self) -> None:
		if self.config_path is None:
			return
		self.config_path.parent.mkdir(parents=True, exist_ok=True)
		self.config_path.write_text(json.dumps(self.all, indent=2), encoding="utf-8")


config = Config(Path("ragstore_config.json"), settings)

__all__ = ["Settings", "settings", "Config", "config", "ConfigAdapter"]
