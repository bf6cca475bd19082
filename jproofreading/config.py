"""設定の読み書きと変更監視。

キー:
- jproofreading.apiKey   OpenAI APIキー（未設定時は環境変数 OPENAI_API_KEY）
- jproofreading.model    使用モデル（既定: chatgpt-4o-latest）
- jproofreading.proxyUrl プロキシURL（未設定時は http.proxy → 環境変数）
- http.proxy             ホスト側のプロキシ設定

保存先はユーザー設定のJSON（JPROOFREADING_CONFIG で上書き可）。
プロジェクト単位の既定値は pyproject.toml の [tool.jproofreading] から読み込める。
"""
from __future__ import annotations
from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping
import tomllib

logger = logging.getLogger(__name__)

SECTION = "jproofreading"
API_KEY = f"{SECTION}.apiKey"
MODEL = f"{SECTION}.model"
PROXY_URL = f"{SECTION}.proxyUrl"
HTTP_PROXY = "http.proxy"

DEFAULT_MODEL = "chatgpt-4o-latest"
DEFAULT_SETTINGS_FILE = Path("~/.config/jproofreading/settings.json")


class ConfigStore:
    """キー/値の設定ストア。update で監視者に変更キーを通知する。

    merge した値は保存対象の値より優先されるが、保存はされない（CLI引数や TOML 用）。
    """

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values: Dict[str, Any] = dict(values or {})
        self._overrides: Dict[str, Any] = {}
        self._watchers: List[Callable[[str], None]] = []

    def get(self, key: str, default: Any = None) -> Any:
        val = self._overrides.get(key)
        if val is None or val == "":
            val = self._values.get(key)
        if val is None or val == "":
            return default
        return val

    def update(self, key: str, value: Any) -> None:
        self._values[key] = value
        self._overrides.pop(key, None)
        self._save()
        for cb in list(self._watchers):
            cb(key)

    def merge(self, values: Mapping[str, Any]) -> None:
        """通知・保存なしで値を上書き（起動時の初期化用）。"""
        self._overrides.update(values)

    def watch(self, callback: Callable[[str], None]) -> Callable[[], None]:
        self._watchers.append(callback)

        def _unwatch():
            if callback in self._watchers:
                self._watchers.remove(callback)
        return _unwatch

    def _save(self) -> None:
        pass


class JsonConfigStore(ConfigStore):
    def __init__(self, path: str | os.PathLike[str]):
        self.path = Path(path).expanduser()
        super().__init__(_load_json(self.path))

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._values, ensure_ascii=False, indent=2), encoding="utf-8")


def _load_json(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("failed to load settings %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def default_settings_path(environ: Mapping[str, str] | None = None) -> Path:
    env = os.environ if environ is None else environ
    override = env.get("JPROOFREADING_CONFIG")
    return Path(override) if override else DEFAULT_SETTINGS_FILE


def load_toml_config(path: str | os.PathLike[str]) -> Dict[str, Any]:
    """TOML の [tool.jproofreading] を設定キーへ変換して返す。"""
    p = Path(path)
    with p.open("rb") as f:
        cfg = tomllib.load(f)
    tool = cfg.get("tool", {}) if isinstance(cfg, dict) else {}
    section = tool.get(SECTION, {}) if isinstance(tool, dict) else {}
    values: Dict[str, Any] = {}
    for key in ("apiKey", "model", "proxyUrl"):
        if key in section:
            values[f"{SECTION}.{key}"] = str(section[key])
    return values


@dataclass(frozen=True)
class Settings:
    api_key: str | None
    model: str
    proxy_url: str | None

    @classmethod
    def from_store(cls, store: ConfigStore, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            api_key=store.get(API_KEY) or env.get("OPENAI_API_KEY") or None,
            model=store.get(MODEL, DEFAULT_MODEL),
            proxy_url=resolve_proxy(store, env),
        )


def resolve_proxy(store: ConfigStore, environ: Mapping[str, str] | None = None) -> str | None:
    configured = store.get(PROXY_URL)
    if configured:
        return configured
    host_proxy = store.get(HTTP_PROXY)
    if host_proxy:
        return host_proxy
    env = os.environ if environ is None else environ
    for name in ("HTTPS_PROXY", "https_proxy", "HTTP_PROXY", "http_proxy"):
        if env.get(name):
            return env[name]
    return None


def affects_client(key: str) -> bool:
    return key.startswith(SECTION + ".") or key.startswith("http.")


__all__ = [
    "ConfigStore",
    "JsonConfigStore",
    "Settings",
    "load_toml_config",
    "resolve_proxy",
    "default_settings_path",
    "affects_client",
    "API_KEY",
    "MODEL",
    "PROXY_URL",
    "HTTP_PROXY",
    "DEFAULT_MODEL",
]
