from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from .settings import settings


class ClientCfg(BaseModel):
    log_body_limit: int = 2048


class ContactsCfg(BaseModel):
    email_lookup_limit: int = 2
    name_search_limit: int = 50
    default_name: str = "Unnamed Contact"
    default_person_name: str = "Customer"


class OrdersCfg(BaseModel):
    notes: str = "Created via Sales Desk"
    reference_prefix: str = "SO"
    number_prefix: str = "SO-"
    number_padding: int = 5
    verify_contact: bool = True


class PurchasingCfg(BaseModel):
    notes_template: str = "Auto-created from Sales Order {order_id}"
    reference_template: str = "SO:{order_id} / {stamp}"


class RuntimeConfig(BaseModel):
    client: ClientCfg = Field(default_factory=ClientCfg)
    contacts: ContactsCfg = Field(default_factory=ContactsCfg)
    orders: OrdersCfg = Field(default_factory=OrdersCfg)
    purchasing: PurchasingCfg = Field(default_factory=PurchasingCfg)


def _config_dir(base_dir: str) -> Path:
    p = Path(base_dir) / "config"
    p.mkdir(parents=True, exist_ok=True)
    return p


def _runtime_path(base_dir: str) -> Path:
    return _config_dir(base_dir) / "runtime_config.yaml"


def _defaults_path(base_dir: str) -> Path:
    # optional file; if present, merged under runtime
    return _config_dir(base_dir) / "service_defaults.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data or {}


def _deep_merge(a: dict[str, Any], b: dict[str, Any]) -> dict[str, Any]:
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def load_runtime_config(base_dir: str | None = None) -> RuntimeConfig:
    base_dir = base_dir or settings.data_dir
    defaults = _load_yaml(_defaults_path(base_dir))
    runtime = _load_yaml(_runtime_path(base_dir))
    merged = _deep_merge(defaults, runtime)
    return RuntimeConfig(**merged)


def save_runtime_config(cfg: RuntimeConfig, base_dir: str | None = None) -> None:
    base_dir = base_dir or settings.data_dir
    runtime_path = _runtime_path(base_dir)
    raw = cfg.model_dump()
    runtime_path.write_text(yaml.safe_dump(raw, sort_keys=False), encoding="utf-8")
